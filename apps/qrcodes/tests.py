import base64
from dataclasses import FrozenInstanceError
from unittest.mock import Mock, patch

from django.test import TestCase, override_settings
from django.urls import reverse

from apps.core.models import ShopSession
from apps.core.shopify import AdminApiClient, ShopifyAPIError

from .forms import QRCodeFormState, validate_qr_code
from .models import QRCode
from .services import (
    create_qr_code,
    delete_qr_code,
    get_destination_url,
    get_qr_code,
    get_qr_code_image,
    get_qr_codes,
    get_scan_url,
    update_qr_code,
)
from .templatetags.qr_filters import truncate_title

SHOP = "example.myshopify.com"
OTHER_SHOP = "other.myshopify.com"


def product_response(title="Snowboard", url="https://cdn.example.com/board.png", alt="A board"):
    return {
        "data": {
            "product": {
                "title": title,
                "images": {"nodes": [{"altText": alt, "url": url}] if url else []},
            }
        }
    }


def valid_payload(**overrides):
    payload = {
        "title": "Winter sale",
        "product_id": "gid://shopify/Product/1",
        "product_variant_id": "gid://shopify/ProductVariant/123",
        "product_handle": "snowboard",
        "destination": "product",
    }
    payload.update(overrides)
    return payload


class DestinationUrlTest(TestCase):
    def test_product_destination(self):
        qr_code = QRCode(shop=SHOP, product_handle="snowboard", destination="product")
        self.assertEqual(get_destination_url(qr_code), "https://example.myshopify.com/products/snowboard")

    def test_cart_destination(self):
        qr_code = QRCode(
            shop=SHOP,
            product_variant_id="gid://shopify/ProductVariant/123",
            destination="cart",
        )
        self.assertEqual(get_destination_url(qr_code), "https://example.myshopify.com/cart/123:1")

    def test_cart_destination_with_other_namespace(self):
        qr_code = QRCode(
            shop=SHOP,
            product_variant_id="gid://partner/ProductVariant/987",
            destination="cart",
        )
        self.assertEqual(get_destination_url(qr_code), "https://example.myshopify.com/cart/987:1")

    def test_cart_destination_with_malformed_variant(self):
        qr_code = QRCode(shop=SHOP, product_variant_id="variant-123", destination="cart")
        with self.assertRaises(ValueError):
            get_destination_url(qr_code)


class QRCodeImageTest(TestCase):
    def test_scan_url_uses_app_url(self):
        self.assertEqual(get_scan_url(42), "https://qr.example.com/qrcodes/42/scan")

    @override_settings(SHOPIFY_APP_URL="https://tunnel.example.org/")
    def test_scan_url_with_trailing_slash(self):
        self.assertEqual(get_scan_url(7), "https://tunnel.example.org/qrcodes/7/scan")

    def test_image_is_png_data_uri(self):
        image = get_qr_code_image(42)

        prefix = "data:image/png;base64,"
        self.assertTrue(image.startswith(prefix))
        payload = base64.b64decode(image[len(prefix):])
        self.assertTrue(payload.startswith(b"\x89PNG"))

    def test_image_is_deterministic(self):
        self.assertEqual(get_qr_code_image(5), get_qr_code_image(5))
        self.assertNotEqual(get_qr_code_image(5), get_qr_code_image(6))


class ValidateQRCodeTest(TestCase):
    def test_empty_payload(self):
        errors = validate_qr_code({})
        self.assertEqual(
            errors,
            {
                "title": "Title is required",
                "product_id": "Product is required",
                "destination": "Destination is required",
            },
        )

    def test_minimal_valid_payload(self):
        self.assertIsNone(validate_qr_code({"title": "t", "product_id": "p", "destination": "product"}))

    def test_blank_title_is_rejected(self):
        errors = validate_qr_code(valid_payload(title="   "))
        self.assertEqual(errors, {"title": "Title is required"})

    def test_unknown_destination(self):
        errors = validate_qr_code(valid_payload(destination="checkout"))
        self.assertIn("destination", errors)

    def test_malformed_variant_id(self):
        errors = validate_qr_code(valid_payload(product_variant_id="123"))
        self.assertEqual(list(errors), ["product_variant_id"])

    def test_cart_destination_requires_variant(self):
        errors = validate_qr_code(valid_payload(destination="cart", product_variant_id=""))
        self.assertEqual(list(errors), ["product_variant_id"])

    def test_product_destination_without_variant(self):
        self.assertIsNone(validate_qr_code(valid_payload(product_variant_id="")))


class QRCodeFormStateTest(TestCase):
    def test_new_state_defaults(self):
        state = QRCodeFormState.from_qr_code(None)
        self.assertEqual(state.destination, "product")
        self.assertEqual(state.title, "")

    def test_unchanged_state_is_clean(self):
        clean = QRCodeFormState.from_qr_code({"title": "Sale", "destination": "cart", "product_title": None})
        current = QRCodeFormState.from_data({"title": " Sale ", "destination": "cart"})
        self.assertFalse(current.is_dirty(clean))

    def test_changed_title_is_dirty(self):
        clean = QRCodeFormState(title="Sale")
        current = QRCodeFormState(title="Sale!")
        self.assertTrue(current.is_dirty(clean))

    def test_state_is_immutable(self):
        state = QRCodeFormState()
        with self.assertRaises(FrozenInstanceError):
            state.title = "changed"


class PersistenceTest(TestCase):
    def setUp(self):
        self.graphql = Mock(return_value=product_response())

    def test_create_then_fetch(self):
        created = create_qr_code(SHOP, valid_payload())

        fetched = get_qr_code(created.id, self.graphql)

        self.assertTrue(fetched["id"])
        self.assertEqual(fetched["title"], "Winter sale")
        self.assertEqual(fetched["product_id"], "gid://shopify/Product/1")
        self.assertEqual(fetched["destination"], "product")
        self.assertEqual(fetched["shop"], SHOP)
        self.assertEqual(fetched["scans"], 0)

    def test_fetch_missing_id_returns_none(self):
        self.assertIsNone(get_qr_code(999, self.graphql))
        self.graphql.assert_not_called()

    def test_fetch_restricted_to_shop(self):
        created = create_qr_code(OTHER_SHOP, valid_payload())

        self.assertIsNone(get_qr_code(created.id, self.graphql, shop=SHOP))
        self.assertIsNotNone(get_qr_code(created.id, self.graphql, shop=OTHER_SHOP))

    def test_fetch_all_empty_shop(self):
        self.assertEqual(get_qr_codes(SHOP, self.graphql), [])
        self.graphql.assert_not_called()

    def test_fetch_all_ordered_by_id_desc(self):
        first = create_qr_code(SHOP, valid_payload(title="First", product_id="gid://shopify/Product/1"))
        second = create_qr_code(SHOP, valid_payload(title="Second", product_id="gid://shopify/Product/2"))
        create_qr_code(OTHER_SHOP, valid_payload(title="Elsewhere"))

        def lookup(query, variables):
            return product_response(title=f"Product {variables['id'].rsplit('/', 1)[-1]}")

        qr_codes = get_qr_codes(SHOP, Mock(side_effect=lookup))

        self.assertEqual([qr_code["id"] for qr_code in qr_codes], [second.id, first.id])
        self.assertEqual([qr_code["product_title"] for qr_code in qr_codes], ["Product 2", "Product 1"])

    def test_one_enrichment_call_per_record(self):
        for index in range(3):
            create_qr_code(SHOP, valid_payload(title=f"Code {index}"))

        get_qr_codes(SHOP, self.graphql)

        self.assertEqual(self.graphql.call_count, 3)

    @override_settings(ENRICHMENT_MAX_WORKERS=0)
    def test_zero_workers_still_enriches(self):
        create_qr_code(SHOP, valid_payload())

        qr_codes = get_qr_codes(SHOP, self.graphql)

        self.assertEqual(len(qr_codes), 1)
        self.assertEqual(qr_codes[0]["product_title"], "Snowboard")

    def test_enrichment_failure_fails_whole_list(self):
        create_qr_code(SHOP, valid_payload(title="Good", product_id="gid://shopify/Product/1"))
        create_qr_code(SHOP, valid_payload(title="Bad", product_id="gid://shopify/Product/2"))

        def lookup(query, variables):
            if variables["id"].endswith("/2"):
                raise ShopifyAPIError("Throttled")
            return product_response()

        with self.assertRaises(ShopifyAPIError):
            get_qr_codes(SHOP, Mock(side_effect=lookup))

    def test_update(self):
        created = create_qr_code(SHOP, valid_payload())

        update_qr_code(created.id, {"title": "Spring sale", "destination": "cart"}, shop=SHOP)

        created.refresh_from_db()
        self.assertEqual(created.title, "Spring sale")
        self.assertEqual(created.destination, "cart")

    def test_update_missing_id(self):
        with self.assertRaises(QRCode.DoesNotExist):
            update_qr_code(999, {"title": "x"})

    def test_delete_then_fetch(self):
        created = create_qr_code(SHOP, valid_payload())

        delete_qr_code(created.id)

        self.assertIsNone(get_qr_code(created.id, self.graphql))

    def test_delete_missing_id(self):
        with self.assertRaises(QRCode.DoesNotExist):
            delete_qr_code(999)

    def test_delete_other_shop_record(self):
        created = create_qr_code(OTHER_SHOP, valid_payload())

        with self.assertRaises(QRCode.DoesNotExist):
            delete_qr_code(created.id, shop=SHOP)


class SupplementQRCodeTest(TestCase):
    def setUp(self):
        self.qr_code = create_qr_code(SHOP, valid_payload(destination="cart"))

    def test_product_fields(self):
        graphql = Mock(return_value=product_response())

        qr_code = get_qr_code(self.qr_code.id, graphql)

        graphql.assert_called_once()
        self.assertEqual(graphql.call_args[0][1], {"id": "gid://shopify/Product/1"})
        self.assertFalse(qr_code["product_deleted"])
        self.assertEqual(qr_code["product_title"], "Snowboard")
        self.assertEqual(qr_code["product_image"], "https://cdn.example.com/board.png")
        self.assertEqual(qr_code["product_alt"], "A board")
        self.assertEqual(qr_code["destination_url"], "https://example.myshopify.com/cart/123:1")
        self.assertTrue(qr_code["image"].startswith("data:image/png;base64,"))

    def test_product_without_images(self):
        qr_code = get_qr_code(self.qr_code.id, Mock(return_value=product_response(url=None)))

        self.assertIsNone(qr_code["product_image"])
        self.assertIsNone(qr_code["product_alt"])

    def test_product_without_title_is_deleted(self):
        response = {"data": {"product": {"title": None, "images": {"nodes": []}}}}

        qr_code = get_qr_code(self.qr_code.id, Mock(return_value=response))

        self.assertTrue(qr_code["product_deleted"])
        self.assertFalse(qr_code["product_title"])

    def test_missing_product_is_deleted(self):
        qr_code = get_qr_code(self.qr_code.id, Mock(return_value={"data": {"product": None}}))

        self.assertTrue(qr_code["product_deleted"])
        self.assertFalse(qr_code["product_title"])


class TruncateTitleTest(TestCase):
    def test_short_title(self):
        self.assertEqual(truncate_title("Sale"), "Sale")

    def test_long_title(self):
        result = truncate_title("A" * 30)
        self.assertEqual(len(result), 25)
        self.assertTrue(result.endswith("…"))

    def test_missing_title(self):
        self.assertEqual(truncate_title(None), "")


class AdminViewsTest(TestCase):
    def setUp(self):
        ShopSession.objects.create(shop=SHOP, access_token="shpat_test")
        session = self.client.session
        session["shop"] = SHOP
        session.save()

        patcher = patch.object(AdminApiClient, "graphql", return_value=product_response())
        self.graphql = patcher.start()
        self.addCleanup(patcher.stop)

    def test_requires_shop(self):
        self.client.logout()

        response = self.client.get(reverse("qrcodes:index"))

        self.assertRedirects(response, reverse("core:install"), fetch_redirect_response=False)

    def test_index_empty_state(self):
        response = self.client.get(reverse("qrcodes:index"))

        self.assertEqual(response.status_code, 200)
        self.assertContains(response, "Create unique QR codes for your product")
        self.graphql.assert_not_called()

    def test_index_lists_shop_records(self):
        create_qr_code(SHOP, valid_payload(title="Winter sale"))
        create_qr_code(OTHER_SHOP, valid_payload(title="Foreign code"))

        response = self.client.get(reverse("qrcodes:index"))

        self.assertContains(response, "Winter sale")
        self.assertContains(response, "Snowboard")
        self.assertNotContains(response, "Foreign code")
        self.assertEqual(len(response.context["qr_codes"]), 1)

    def test_index_flags_deleted_product(self):
        create_qr_code(SHOP, valid_payload())
        self.graphql.return_value = {"data": {"product": None}}

        response = self.client.get(reverse("qrcodes:index"))

        self.assertContains(response, "product has been deleted")

    def test_index_with_cart_record(self):
        self.client.post(reverse("qrcodes:new"), valid_payload(title="Cart code", destination="cart"))

        response = self.client.get(reverse("qrcodes:index"))

        self.assertContains(response, "Cart code")
        self.assertEqual(
            response.context["qr_codes"][0]["destination_url"], "https://example.myshopify.com/cart/123:1"
        )

    def test_new_form(self):
        response = self.client.get(reverse("qrcodes:new"))

        self.assertEqual(response.status_code, 200)
        self.assertContains(response, "Create new QR code")
        self.assertFalse(response.context["is_dirty"])
        self.assertEqual(response.context["clean_state"]["destination"], "product")

    def test_edit_form(self):
        qr_code = create_qr_code(SHOP, valid_payload())

        response = self.client.get(reverse("qrcodes:detail", args=[qr_code.id]))

        self.assertEqual(response.status_code, 200)
        self.assertContains(response, "Edit QR code")
        self.assertContains(response, "https://example.myshopify.com/products/snowboard")
        self.assertEqual(response.context["qr_code"]["id"], qr_code.id)

    def test_edit_form_missing_record(self):
        response = self.client.get(reverse("qrcodes:detail", args=[999]))
        self.assertEqual(response.status_code, 404)

    def test_edit_form_other_shop_record(self):
        qr_code = create_qr_code(OTHER_SHOP, valid_payload())

        response = self.client.get(reverse("qrcodes:detail", args=[qr_code.id]))

        self.assertEqual(response.status_code, 404)

    def test_create(self):
        response = self.client.post(reverse("qrcodes:new"), valid_payload())

        qr_code = QRCode.objects.get()
        self.assertRedirects(
            response, reverse("qrcodes:detail", args=[qr_code.id]), fetch_redirect_response=False
        )
        self.assertEqual(qr_code.shop, SHOP)
        self.assertEqual(qr_code.title, "Winter sale")
        self.assertEqual(qr_code.product_handle, "snowboard")

    def test_create_with_errors(self):
        response = self.client.post(reverse("qrcodes:new"), {"title": "Half done", "destination": ""})

        self.assertEqual(response.status_code, 422)
        self.assertContains(response, "Product is required", status_code=422)
        self.assertContains(response, "Destination is required", status_code=422)
        self.assertContains(response, 'value="Half done"', status_code=422)
        self.assertTrue(response.context["is_dirty"])
        self.assertFalse(QRCode.objects.exists())

    def test_create_cart_without_variant(self):
        payload = {"title": "T", "product_id": "gid://shopify/Product/1", "destination": "cart"}

        response = self.client.post(reverse("qrcodes:new"), payload)

        self.assertEqual(response.status_code, 422)
        self.assertContains(response, "Product variant is required for a cart destination", status_code=422)
        self.assertFalse(QRCode.objects.exists())

    def test_update(self):
        qr_code = create_qr_code(SHOP, valid_payload())

        response = self.client.post(
            reverse("qrcodes:detail", args=[qr_code.id]),
            valid_payload(title="Spring sale", destination="cart"),
        )

        self.assertRedirects(
            response, reverse("qrcodes:detail", args=[qr_code.id]), fetch_redirect_response=False
        )
        qr_code.refresh_from_db()
        self.assertEqual(qr_code.title, "Spring sale")
        self.assertEqual(qr_code.destination, "cart")

    def test_update_with_errors_keeps_record(self):
        qr_code = create_qr_code(SHOP, valid_payload())

        response = self.client.post(reverse("qrcodes:detail", args=[qr_code.id]), valid_payload(title=""))

        self.assertEqual(response.status_code, 422)
        qr_code.refresh_from_db()
        self.assertEqual(qr_code.title, "Winter sale")

    def test_delete(self):
        qr_code = create_qr_code(SHOP, valid_payload())

        response = self.client.delete(reverse("qrcodes:detail", args=[qr_code.id]))

        self.assertRedirects(response, reverse("qrcodes:index"), fetch_redirect_response=False)
        self.assertFalse(QRCode.objects.filter(id=qr_code.id).exists())

    def test_delete_from_html_form(self):
        qr_code = create_qr_code(SHOP, valid_payload())

        response = self.client.post(reverse("qrcodes:detail", args=[qr_code.id]), {"_method": "DELETE"})

        self.assertRedirects(response, reverse("qrcodes:index"), fetch_redirect_response=False)
        self.assertFalse(QRCode.objects.exists())

    def test_delete_other_shop_record(self):
        qr_code = create_qr_code(OTHER_SHOP, valid_payload())

        response = self.client.delete(reverse("qrcodes:detail", args=[qr_code.id]))

        self.assertEqual(response.status_code, 404)
        self.assertTrue(QRCode.objects.filter(id=qr_code.id).exists())

    def test_enrichment_failure_propagates(self):
        create_qr_code(SHOP, valid_payload())
        self.graphql.side_effect = ShopifyAPIError("Throttled")

        with self.assertRaises(ShopifyAPIError):
            self.client.get(reverse("qrcodes:index"))


class PublicViewsTest(TestCase):
    def setUp(self):
        self.qr_code = create_qr_code(SHOP, valid_payload(destination="cart"))

    def test_public_page(self):
        response = self.client.get(reverse("qrcodes_public:detail", args=[self.qr_code.id]))

        self.assertEqual(response.status_code, 200)
        self.assertContains(response, "Winter sale")
        self.assertContains(response, "data:image/png;base64,")

    def test_scan_path_matches_image_url(self):
        self.assertEqual(reverse("qrcodes_public:scan", args=[self.qr_code.id]), f"/qrcodes/{self.qr_code.id}/scan")

    def test_scan_counts_and_redirects(self):
        response = self.client.get(reverse("qrcodes_public:scan", args=[self.qr_code.id]))
        self.client.get(reverse("qrcodes_public:scan", args=[self.qr_code.id]))

        self.assertRedirects(
            response, "https://example.myshopify.com/cart/123:1", fetch_redirect_response=False
        )
        self.qr_code.refresh_from_db()
        self.assertEqual(self.qr_code.scans, 2)

    def test_scan_missing_record(self):
        response = self.client.get(reverse("qrcodes_public:scan", args=[999]))
        self.assertEqual(response.status_code, 404)
