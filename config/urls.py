from django.contrib import admin
from django.urls import include, path

urlpatterns = [
    path("admin/", admin.site.urls),
    path("", include("apps.core.urls")),
    path("app/", include("apps.qrcodes.urls")),
    path("qrcodes/", include("apps.qrcodes.public_urls")),
]
