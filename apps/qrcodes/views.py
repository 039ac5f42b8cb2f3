import logging

import requests
from django.db.models import F
from django.http import Http404
from django.shortcuts import get_object_or_404, redirect, render
from django.urls import reverse
from django.views.decorators.http import require_GET, require_http_methods

from apps.core.decorators import shop_auth
from apps.core.shopify import ShopifyAPIError

from .forms import QRCodeForm, QRCodeFormState
from .models import QRCode
from .services import (
    create_qr_code,
    delete_qr_code,
    get_destination_url,
    get_qr_code,
    get_qr_code_image,
    get_qr_codes,
    update_qr_code,
)

logger = logging.getLogger(__name__)


@require_GET
@shop_auth
def index(request):
    shop = request.shop_session.shop

    try:
        qr_codes = get_qr_codes(shop, request.admin)
    except (ShopifyAPIError, requests.RequestException) as e:
        logger.error("Error loading QR codes for %s: %s", shop, str(e))
        raise

    logger.info("Loaded %s QR codes for %s", len(qr_codes), shop)
    return render(request, "qrcodes/index.html", {"qr_codes": qr_codes})


@require_http_methods(["GET", "POST", "DELETE"])
@shop_auth
def qr_code_form(request, qr_code_id=None):
    shop = request.shop_session.shop

    if request.method == "DELETE" or request.POST.get("_method", "").upper() == "DELETE":
        if qr_code_id is None:
            raise Http404("QR code not found")
        try:
            delete_qr_code(qr_code_id, shop=shop)
        except QRCode.DoesNotExist:
            raise Http404("QR code not found")
        return redirect(reverse("qrcodes:index"))

    qr_code = None
    if qr_code_id is not None:
        qr_code = get_qr_code(qr_code_id, request.admin, shop=shop)
        if qr_code is None:
            raise Http404("QR code not found")

    clean_state = QRCodeFormState.from_qr_code(qr_code)

    if request.method == "POST":
        form = QRCodeForm(request.POST)
        errors = form.field_errors()

        if errors:
            logger.info("Rejected QR code submission for %s: %s", shop, ", ".join(errors))
            form_state = QRCodeFormState.from_data(request.POST)
            return _render_form(request, qr_code, clean_state, form_state, errors, status=422)

        if qr_code_id is None:
            saved = create_qr_code(shop, form.to_record())
        else:
            saved = update_qr_code(qr_code_id, form.to_record(), shop=shop)

        return redirect(reverse("qrcodes:detail", args=[saved.id]))

    return _render_form(request, qr_code, clean_state, clean_state, {})


def _render_form(request, qr_code, clean_state, form_state, errors, status=200):
    context = {
        "qr_code": qr_code,
        "form_state": form_state,
        "clean_state": clean_state.as_dict(),
        "is_dirty": form_state.is_dirty(clean_state),
        "errors": errors,
        "destination_choices": QRCode.DESTINATION_CHOICES,
    }
    return render(request, "qrcodes/form.html", context, status=status)


@require_GET
def public_qr_code(request, qr_code_id):
    qr_code = get_object_or_404(QRCode, id=qr_code_id)

    context = {
        "title": qr_code.title,
        "image": get_qr_code_image(qr_code.id),
    }
    return render(request, "qrcodes/public.html", context)


@require_GET
def scan(request, qr_code_id):
    qr_code = get_object_or_404(QRCode, id=qr_code_id)

    QRCode.objects.filter(id=qr_code.id).update(scans=F("scans") + 1)
    logger.info("Scan of QR code %s", qr_code.id)

    return redirect(get_destination_url(qr_code))
