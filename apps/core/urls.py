from django.urls import path

from . import views

app_name = "core"

urlpatterns = [
    path("", views.index, name="index"),
    path("auth/", views.install, name="install"),
    path("auth/callback/", views.callback, name="callback"),
]
