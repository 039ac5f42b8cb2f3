from django.db import models


class QRCode(models.Model):
    DESTINATION_PRODUCT = "product"
    DESTINATION_CART = "cart"
    DESTINATION_CHOICES = [
        (DESTINATION_PRODUCT, "Link to product page"),
        (DESTINATION_CART, "Link to checkout page with product in the cart"),
    ]

    title = models.CharField(max_length=255)
    shop = models.CharField(max_length=255, db_index=True, editable=False)
    product_id = models.CharField(max_length=255)
    product_variant_id = models.CharField(max_length=255, blank=True, default="")
    product_handle = models.CharField(max_length=255, blank=True, default="")
    destination = models.CharField(max_length=16, choices=DESTINATION_CHOICES)
    scans = models.PositiveIntegerField(default=0)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["-id"]
        verbose_name = "QR code"
        verbose_name_plural = "QR codes"

    def __str__(self):
        return f"QR code {self.title} ({self.shop})"
