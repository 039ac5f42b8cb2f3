from django.urls import path

from . import views

app_name = "qrcodes"

urlpatterns = [
    path("", views.index, name="index"),
    path("qrcodes/new/", views.qr_code_form, name="new"),
    path("qrcodes/<int:qr_code_id>/", views.qr_code_form, name="detail"),
]
