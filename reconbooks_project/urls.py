from django.conf import settings
from django.contrib import admin
from django.test.signals import setting_changed
from django.urls import include, path


def _build_urlpatterns():
    patterns = [
        path("api/", include("core.urls")),
    ]

    if settings.ENABLE_DJANGO_ADMIN:
        patterns.insert(0, path("admin/", admin.site.urls))

    return patterns


urlpatterns = _build_urlpatterns()


def _reload_urlpatterns(**kwargs):
    if kwargs.get("setting") in {"ENABLE_DJANGO_ADMIN", "DEBUG"}:
        global urlpatterns
        urlpatterns = _build_urlpatterns()


setting_changed.connect(_reload_urlpatterns)
