from django.urls import path

from . import views

app_name = "qrcodes_public"

urlpatterns = [
    path("<int:qr_code_id>/", views.public_qr_code, name="detail"),
    path("<int:qr_code_id>/scan", views.scan, name="scan"),
]
