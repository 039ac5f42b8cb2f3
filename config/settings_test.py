import os

os.environ.setdefault("SECRET_KEY", "test-secret-key")

from .settings import *  # noqa: E402,F401,F403

DEBUG = False

DATABASES = {
    "default": {
        "ENGINE": "django.db.backends.sqlite3",
        "NAME": ":memory:",
    }
}

SHOPIFY_APP_URL = "https://qr.example.com"
SHOPIFY_API_KEY = "test-api-key"
SHOPIFY_API_SECRET = "test-api-secret"
SHOPIFY_SCOPES = "read_products"
SHOPIFY_API_VERSION = "2024-10"

ENRICHMENT_MAX_WORKERS = 4

LOGGING["root"]["level"] = "WARNING"  # noqa: F405
LOGGING["loggers"]["apps"]["level"] = "WARNING"  # noqa: F405
