import hashlib
import hmac
import time
from unittest.mock import Mock, patch
from urllib.parse import parse_qs, urlparse

import requests
from django.test import TestCase
from django.urls import reverse

from .models import ShopSession
from .shopify import AdminApiClient, ShopifyAPIError, is_fresh_launch, is_valid_shop_domain, verify_hmac

SHOP = "example.myshopify.com"
SECRET = "test-api-secret"


def now_timestamp():
    return str(int(time.time()))


def sign(params, secret=SECRET):
    message = "&".join(f"{key}={value}" for key, value in sorted(params.items()))
    signed = dict(params)
    signed["hmac"] = hmac.new(secret.encode(), message.encode(), hashlib.sha256).hexdigest()
    return signed


class ShopDomainTest(TestCase):
    def test_valid_domain(self):
        self.assertTrue(is_valid_shop_domain(SHOP))
        self.assertTrue(is_valid_shop_domain("my-shop-2.myshopify.com"))

    def test_invalid_domain(self):
        self.assertFalse(is_valid_shop_domain(""))
        self.assertFalse(is_valid_shop_domain(None))
        self.assertFalse(is_valid_shop_domain("evil.com"))
        self.assertFalse(is_valid_shop_domain("example.myshopify.com.evil.com"))


class VerifyHmacTest(TestCase):
    def test_valid_signature(self):
        params = sign({"shop": SHOP, "timestamp": "1700000000"})
        self.assertTrue(verify_hmac(params))

    def test_tampered_params(self):
        params = sign({"shop": SHOP, "timestamp": "1700000000"})
        params["shop"] = "other.myshopify.com"
        self.assertFalse(verify_hmac(params))

    def test_missing_signature(self):
        self.assertFalse(verify_hmac({"shop": SHOP}))

    def test_wrong_secret(self):
        params = sign({"shop": SHOP}, secret="another-secret")
        self.assertFalse(verify_hmac(params))


class AdminApiClientTest(TestCase):
    def setUp(self):
        self.client_api = AdminApiClient(SHOP, "shpat_test")

    def _response(self, payload):
        response = Mock()
        response.json.return_value = payload
        response.raise_for_status.return_value = None
        return response

    @patch("apps.core.shopify.requests.post")
    def test_graphql_request(self, mock_post):
        mock_post.return_value = self._response({"data": {"product": {"title": "Board"}}})

        data = self.client_api("query { product }", {"id": "gid://shopify/Product/1"})

        self.assertEqual(data["data"]["product"]["title"], "Board")
        args, kwargs = mock_post.call_args
        self.assertEqual(args[0], "https://example.myshopify.com/admin/api/2024-10/graphql.json")
        self.assertEqual(kwargs["headers"], {"X-Shopify-Access-Token": "shpat_test"})
        self.assertEqual(kwargs["json"]["variables"], {"id": "gid://shopify/Product/1"})

    @patch("apps.core.shopify.requests.post")
    def test_graphql_errors_raise(self, mock_post):
        mock_post.return_value = self._response({"errors": [{"message": "Throttled"}]})

        with self.assertRaisesMessage(ShopifyAPIError, "Throttled"):
            self.client_api.graphql("query { shop { name } }")

    @patch("apps.core.shopify.requests.post")
    def test_http_errors_propagate(self, mock_post):
        response = Mock()
        response.raise_for_status.side_effect = requests.HTTPError("502 Bad Gateway")
        mock_post.return_value = response

        with self.assertRaises(requests.HTTPError):
            self.client_api.graphql("query { shop { name } }")


class LaunchFreshnessTest(TestCase):
    def test_recent_timestamp(self):
        self.assertTrue(is_fresh_launch({"timestamp": "1700000000"}, max_age=300, now=1700000100))

    def test_old_timestamp(self):
        self.assertFalse(is_fresh_launch({"timestamp": "1700000000"}, max_age=300, now=1700000301))

    def test_missing_or_garbled_timestamp(self):
        self.assertFalse(is_fresh_launch({}, max_age=300, now=1700000000))
        self.assertFalse(is_fresh_launch({"timestamp": "soon"}, max_age=300, now=1700000000))


class ShopAuthTest(TestCase):
    def setUp(self):
        ShopSession.objects.create(shop=SHOP, access_token="shpat_test")

    def test_signed_launch_remembers_shop(self):
        params = sign({"shop": SHOP, "timestamp": now_timestamp(), "host": "YWRtaW4"})

        response = self.client.get(reverse("core:index"), params)

        self.assertRedirects(response, reverse("qrcodes:index"), fetch_redirect_response=False)
        self.assertEqual(self.client.session["shop"], SHOP)

    def test_bad_signature(self):
        response = self.client.get(reverse("core:index"), {"shop": SHOP, "hmac": "deadbeef"})
        self.assertEqual(response.status_code, 400)

    def test_unknown_shop_starts_install(self):
        params = sign({"shop": "new-shop.myshopify.com", "timestamp": now_timestamp()})

        response = self.client.get(reverse("core:index"), params)

        self.assertRedirects(
            response,
            f"{reverse('core:install')}?shop=new-shop.myshopify.com",
            fetch_redirect_response=False,
        )

    def test_frame_ancestors_header(self):
        params = sign({"shop": SHOP, "timestamp": now_timestamp()})

        response = self.client.get(reverse("core:index"), params)

        self.assertEqual(
            response["Content-Security-Policy"],
            "frame-ancestors https://example.myshopify.com https://admin.shopify.com;",
        )

    def test_stale_launch_is_rejected(self):
        params = sign({"shop": SHOP, "timestamp": str(int(time.time()) - 3600)})

        response = self.client.get(reverse("core:index"), params)

        self.assertEqual(response.status_code, 400)
        self.assertNotIn("shop", self.client.session)

    def test_install_redirect_encodes_shop(self):
        session = self.client.session
        session["shop"] = "odd shop&admin=1"
        session.save()

        response = self.client.get(reverse("core:index"))

        self.assertRedirects(
            response,
            f"{reverse('core:install')}?shop=odd+shop%26admin%3D1",
            fetch_redirect_response=False,
        )


class InstallTest(TestCase):
    def test_install_form(self):
        response = self.client.get(reverse("core:install"))
        self.assertContains(response, "Install the QR code app")

    def test_invalid_shop(self):
        response = self.client.get(reverse("core:install"), {"shop": "evil.com"})
        self.assertEqual(response.status_code, 400)

    def test_redirects_to_authorize(self):
        response = self.client.get(reverse("core:install"), {"shop": SHOP})

        location = urlparse(response["Location"])
        query = parse_qs(location.query)
        self.assertEqual(response.status_code, 302)
        self.assertEqual(location.netloc, SHOP)
        self.assertEqual(location.path, "/admin/oauth/authorize")
        self.assertEqual(query["client_id"], ["test-api-key"])
        self.assertEqual(query["scope"], ["read_products"])
        self.assertEqual(query["state"], [self.client.session["oauth_state"]])


class CallbackTest(TestCase):
    def setUp(self):
        session = self.client.session
        session["oauth_state"] = "nonce"
        session.save()

    @patch("apps.core.views.exchange_code_for_token")
    def test_stores_session(self, mock_exchange):
        mock_exchange.return_value = {"access_token": "shpat_new", "scope": "read_products"}
        params = sign({"shop": SHOP, "code": "abc", "state": "nonce", "timestamp": "1700000000"})

        response = self.client.get(reverse("core:callback"), params)

        self.assertRedirects(response, reverse("qrcodes:index"), fetch_redirect_response=False)
        mock_exchange.assert_called_once_with(SHOP, "abc")
        shop_session = ShopSession.objects.get(shop=SHOP)
        self.assertEqual(shop_session.access_token, "shpat_new")
        self.assertEqual(self.client.session["shop"], SHOP)

    @patch("apps.core.views.exchange_code_for_token")
    def test_state_mismatch(self, mock_exchange):
        params = sign({"shop": SHOP, "code": "abc", "state": "other", "timestamp": "1700000000"})

        response = self.client.get(reverse("core:callback"), params)

        self.assertEqual(response.status_code, 400)
        mock_exchange.assert_not_called()
        self.assertFalse(ShopSession.objects.exists())

    def test_bad_signature(self):
        response = self.client.get(
            reverse("core:callback"), {"shop": SHOP, "code": "abc", "state": "nonce", "hmac": "00"}
        )
        self.assertEqual(response.status_code, 400)

    @patch("apps.core.views.exchange_code_for_token")
    def test_token_exchange_failure(self, mock_exchange):
        mock_exchange.side_effect = requests.ConnectionError("unreachable")
        params = sign({"shop": SHOP, "code": "abc", "state": "nonce", "timestamp": "1700000000"})

        response = self.client.get(reverse("core:callback"), params)

        self.assertEqual(response.status_code, 400)
        self.assertFalse(ShopSession.objects.exists())
