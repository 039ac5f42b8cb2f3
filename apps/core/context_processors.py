from django.conf import settings


def shopify(request):
    shop_session = getattr(request, "shop_session", None)
    return {
        "shopify_api_key": settings.SHOPIFY_API_KEY,
        "shop": shop_session.shop if shop_session else None,
    }
