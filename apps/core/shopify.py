import hashlib
import hmac
import logging
import re
import time
from urllib.parse import urlencode

import requests
from django.conf import settings

logger = logging.getLogger(__name__)

SHOP_DOMAIN_RE = re.compile(r"^[a-zA-Z0-9][a-zA-Z0-9\-]*\.myshopify\.com$")


class ShopifyAPIError(Exception):
    pass


def is_valid_shop_domain(shop):
    return bool(shop) and bool(SHOP_DOMAIN_RE.match(shop))


def verify_hmac(params, secret=None):
    """Check the ``hmac`` signature Shopify appends to launch and OAuth queries.

    The signature covers every other query parameter, sorted by key and joined
    as ``key=value`` pairs with ``&``.
    """
    secret = secret if secret is not None else settings.SHOPIFY_API_SECRET
    received = params.get("hmac")
    if not received or not secret:
        return False

    message = "&".join(
        f"{key}={value}"
        for key, value in sorted(params.items())
        if key not in ("hmac", "signature")
    )
    expected = hmac.new(secret.encode(), message.encode(), hashlib.sha256).hexdigest()
    return hmac.compare_digest(expected, received)


def is_fresh_launch(params, max_age=None, now=None):
    """Reject signed queries whose ``timestamp`` is missing or too far from now."""
    max_age = max_age if max_age is not None else settings.SHOPIFY_LAUNCH_MAX_AGE
    now = now if now is not None else time.time()
    try:
        timestamp = int(params.get("timestamp", ""))
    except (TypeError, ValueError):
        return False
    return abs(now - timestamp) <= max_age


def build_authorize_url(shop, state, redirect_uri):
    query = urlencode(
        {
            "client_id": settings.SHOPIFY_API_KEY,
            "scope": settings.SHOPIFY_SCOPES,
            "redirect_uri": redirect_uri,
            "state": state,
        }
    )
    return f"https://{shop}/admin/oauth/authorize?{query}"


def exchange_code_for_token(shop, code):
    response = requests.post(
        f"https://{shop}/admin/oauth/access_token",
        json={
            "client_id": settings.SHOPIFY_API_KEY,
            "client_secret": settings.SHOPIFY_API_SECRET,
            "code": code,
        },
        timeout=settings.SHOPIFY_API_TIMEOUT,
    )
    response.raise_for_status()

    data = response.json()
    if "access_token" not in data:
        raise ShopifyAPIError(f"No access token returned for {shop}")

    return data


class AdminApiClient:
    def __init__(self, shop, access_token):
        self.shop = shop
        self.access_token = access_token

    @property
    def endpoint(self):
        return f"https://{self.shop}/admin/api/{settings.SHOPIFY_API_VERSION}/graphql.json"

    def graphql(self, query, variables=None):
        response = requests.post(
            self.endpoint,
            json={"query": query, "variables": variables or {}},
            headers={"X-Shopify-Access-Token": self.access_token},
            timeout=settings.SHOPIFY_API_TIMEOUT,
        )
        response.raise_for_status()

        data = response.json()
        if data.get("errors"):
            logger.error("GraphQL errors from %s: %s", self.shop, data["errors"])
            raise ShopifyAPIError(_error_message(data["errors"]))

        return data

    def __call__(self, query, variables=None):
        return self.graphql(query, variables)


def _error_message(errors):
    if isinstance(errors, list) and errors and isinstance(errors[0], dict):
        return errors[0].get("message", "Shopify API error")
    return str(errors)
