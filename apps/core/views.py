import logging
import secrets

import requests
from django.http import HttpResponseBadRequest
from django.shortcuts import redirect, render
from django.urls import reverse

from .decorators import shop_auth
from .models import ShopSession
from .shopify import (
    ShopifyAPIError,
    build_authorize_url,
    exchange_code_for_token,
    is_valid_shop_domain,
    verify_hmac,
)

logger = logging.getLogger(__name__)


@shop_auth
def index(request):
    return redirect(reverse("qrcodes:index"))


def install(request):
    shop = request.GET.get("shop", "").strip()

    if not shop:
        return render(request, "core/install.html")

    if not is_valid_shop_domain(shop):
        return render(
            request,
            "core/install.html",
            {"error": "Enter a valid shop domain, e.g. example.myshopify.com", "shop": shop},
            status=400,
        )

    state = secrets.token_urlsafe(16)
    request.session["oauth_state"] = state
    redirect_uri = request.build_absolute_uri(reverse("core:callback"))

    logger.info("Starting OAuth for %s", shop)
    return redirect(build_authorize_url(shop, state, redirect_uri))


def callback(request):
    params = request.GET.dict()
    shop = params.get("shop", "")

    if not verify_hmac(params):
        logger.warning("OAuth callback with bad hmac for %s", shop)
        return HttpResponseBadRequest("Invalid request signature")

    if not is_valid_shop_domain(shop):
        return HttpResponseBadRequest("Invalid shop domain")

    expected_state = request.session.pop("oauth_state", None)
    if not expected_state or params.get("state") != expected_state:
        logger.warning("OAuth state mismatch for %s", shop)
        return HttpResponseBadRequest("Invalid OAuth state")

    try:
        token_data = exchange_code_for_token(shop, params.get("code", ""))
    except (requests.RequestException, ShopifyAPIError) as e:
        logger.error("Token exchange failed for %s: %s", shop, str(e))
        return HttpResponseBadRequest("Could not complete installation")

    ShopSession.objects.update_or_create(
        shop=shop,
        defaults={
            "access_token": token_data["access_token"],
            "scope": token_data.get("scope", ""),
        },
    )
    request.session["shop"] = shop

    logger.info("Installed for %s", shop)
    return redirect(reverse("qrcodes:index"))
