from apps.core.shopify import is_valid_shop_domain

SHOPIFY_ADMIN_ORIGIN = "https://admin.shopify.com"


class EmbeddedAppFrameMiddleware:
    def __init__(self, get_response):
        self.get_response = get_response

    def __call__(self, request):
        response = self.get_response(request)

        shop = request.GET.get("shop") or _session_shop(request)
        ancestors = [SHOPIFY_ADMIN_ORIGIN]
        if is_valid_shop_domain(shop):
            ancestors.insert(0, f"https://{shop}")

        response["Content-Security-Policy"] = "frame-ancestors " + " ".join(ancestors) + ";"
        return response


def _session_shop(request):
    session = getattr(request, "session", None)
    if session is None:
        return None
    return session.get("shop")
