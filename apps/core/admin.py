from django.contrib import admin

from .models import ShopSession


@admin.register(ShopSession)
class ShopSessionAdmin(admin.ModelAdmin):
    list_display = ["shop", "scope", "updated_at"]
    search_fields = ["shop"]
    exclude = ["access_token"]
