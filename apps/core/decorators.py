import logging
from functools import wraps
from urllib.parse import urlencode

from django.http import HttpResponseBadRequest
from django.shortcuts import redirect
from django.urls import reverse

from .models import ShopSession
from .shopify import AdminApiClient, is_fresh_launch, is_valid_shop_domain, verify_hmac

logger = logging.getLogger(__name__)


def shop_auth(func):
    """Authenticate an admin request for the embedded app.

    A launch from the Shopify admin carries a signed query (``shop``, ``hmac``,
    ``timestamp``...). Later navigation inside the iframe relies on the shop
    remembered in the Django session. Either way the view receives
    ``request.shop_session`` and ``request.admin``, a GraphQL client bound to
    the shop's offline access token.
    """

    @wraps(func)
    def wrapper(request, *args, **kwargs):
        if request.GET.get("hmac"):
            if not verify_hmac(request.GET.dict()):
                logger.warning("Rejected launch request with bad hmac for %s", request.GET.get("shop"))
                return HttpResponseBadRequest("Invalid request signature")
            if not is_fresh_launch(request.GET):
                logger.warning("Rejected stale launch request for %s", request.GET.get("shop"))
                return HttpResponseBadRequest("Launch request has expired")
            shop = request.GET.get("shop")
            if not is_valid_shop_domain(shop):
                return HttpResponseBadRequest("Invalid shop domain")
            request.session["shop"] = shop
        else:
            shop = request.session.get("shop")

        if not shop:
            return redirect(reverse("core:install"))

        shop_session = ShopSession.objects.filter(shop=shop).first()
        if shop_session is None:
            logger.info("No session for %s, starting install", shop)
            return redirect(f"{reverse('core:install')}?{urlencode({'shop': shop})}")

        request.shop_session = shop_session
        request.admin = AdminApiClient(shop_session.shop, shop_session.access_token)
        return func(request, *args, **kwargs)

    return wrapper
