import base64
import logging
import re
from concurrent.futures import ThreadPoolExecutor
from io import BytesIO
from urllib.parse import urljoin

import qrcode
from django.conf import settings

from .models import QRCode

logger = logging.getLogger(__name__)

QR_VERSION = 1
QR_BOX_SIZE = 10
QR_BORDER = 4
QR_IMAGE_FORMAT = "PNG"

PRODUCT_VARIANT_ID_RE = re.compile(r"^gid://[^/]+/ProductVariant/([0-9]+)$")

SUPPLEMENT_QR_CODE_QUERY = """
  query supplementQRCode($id: ID!) {
    product(id: $id) {
      title
      images(first: 1) {
        nodes {
          altText
          url
        }
      }
    }
  }
"""


def get_qr_code(qr_code_id, graphql, shop=None):
    """Return the enriched QR code, or ``None`` when no such record exists.

    When ``shop`` is given the lookup is restricted to that shop's records.
    """
    queryset = QRCode.objects.filter(id=qr_code_id)
    if shop is not None:
        queryset = queryset.filter(shop=shop)

    qr_code = queryset.first()
    if qr_code is None:
        return None

    return supplement_qr_code(qr_code, graphql)


def get_qr_codes(shop, graphql):
    qr_codes = list(QRCode.objects.filter(shop=shop).order_by("-id"))

    if not qr_codes:
        return []

    workers = max(1, min(settings.ENRICHMENT_MAX_WORKERS, len(qr_codes)))
    with ThreadPoolExecutor(max_workers=workers) as executor:
        return list(executor.map(lambda qr_code: supplement_qr_code(qr_code, graphql), qr_codes))


def create_qr_code(shop, data):
    qr_code = QRCode.objects.create(shop=shop, **data)
    logger.info("Created QR code %s for %s", qr_code.id, shop)
    return qr_code


def update_qr_code(qr_code_id, data, shop=None):
    """Overwrite the given fields; raises ``QRCode.DoesNotExist`` for an unknown id."""
    lookup = {"id": qr_code_id}
    if shop is not None:
        lookup["shop"] = shop

    qr_code = QRCode.objects.get(**lookup)
    for field, value in data.items():
        setattr(qr_code, field, value)
    qr_code.save()

    logger.info("Updated QR code %s", qr_code.id)
    return qr_code


def delete_qr_code(qr_code_id, shop=None):
    lookup = {"id": qr_code_id}
    if shop is not None:
        lookup["shop"] = shop

    QRCode.objects.get(**lookup).delete()
    logger.info("Deleted QR code %s", qr_code_id)


def get_scan_url(qr_code_id):
    return urljoin(settings.SHOPIFY_APP_URL, f"/qrcodes/{qr_code_id}/scan")


def get_qr_code_image(qr_code_id):
    qr = qrcode.QRCode(
        version=QR_VERSION,
        error_correction=qrcode.constants.ERROR_CORRECT_L,
        box_size=QR_BOX_SIZE,
        border=QR_BORDER,
    )
    qr.add_data(get_scan_url(qr_code_id))
    qr.make(fit=True)

    img = qr.make_image(fill_color="black", back_color="white")

    buffer = BytesIO()
    img.save(buffer, format=QR_IMAGE_FORMAT)
    img_str = base64.b64encode(buffer.getvalue()).decode()

    return f"data:image/png;base64,{img_str}"


def get_destination_url(qr_code):
    if qr_code.destination == QRCode.DESTINATION_PRODUCT:
        return f"https://{qr_code.shop}/products/{qr_code.product_handle}"

    match = PRODUCT_VARIANT_ID_RE.match(qr_code.product_variant_id or "")
    if not match:
        raise ValueError(f"Unexpected product variant id: {qr_code.product_variant_id!r}")

    return f"https://{qr_code.shop}/cart/{match.group(1)}:1"


def supplement_qr_code(qr_code, graphql):
    response = graphql(SUPPLEMENT_QR_CODE_QUERY, {"id": qr_code.product_id})

    product = (response.get("data") or {}).get("product") or {}
    images = (product.get("images") or {}).get("nodes") or []
    first_image = images[0] if images else {}

    return {
        "id": qr_code.id,
        "title": qr_code.title,
        "shop": qr_code.shop,
        "product_id": qr_code.product_id,
        "product_variant_id": qr_code.product_variant_id,
        "product_handle": qr_code.product_handle,
        "destination": qr_code.destination,
        "scans": qr_code.scans,
        "created_at": qr_code.created_at,
        "product_deleted": not product.get("title"),
        "product_title": product.get("title"),
        "product_image": first_image.get("url"),
        "product_alt": first_image.get("altText"),
        "destination_url": get_destination_url(qr_code),
        "image": get_qr_code_image(qr_code.id),
    }
