from pathlib import Path
import os

import dj_database_url
import sentry_sdk
from dotenv import load_dotenv
from sentry_sdk.integrations.django import DjangoIntegration


BASE_DIR = Path(__file__).resolve().parent.parent
load_dotenv(BASE_DIR / ".env")  # explicit .env location

SECRET_KEY = os.getenv("DJANGO_SECRET_KEY") or os.getenv("SECRET_KEY") or "dev-key"


def _get_bool_env(name: str, default: bool) -> bool:
    raw_value = os.getenv(name)
    if raw_value is None:
        return default
    return raw_value.lower() in {"1", "true", "yes", "on"}


def _get_list_env(name: str) -> list[str]:
    raw_value = os.getenv(name, "")
    if not raw_value:
        return []
    parts = raw_value.replace(";", ",").split(",")
    return [p.strip() for p in parts if p.strip()]


def _get_int_env(name: str, default: int) -> int:
    raw_value = os.getenv(name)
    if raw_value is None or raw_value == "":
        return default
    return int(raw_value)


DEBUG = _get_bool_env("DJANGO_DEBUG", _get_bool_env("DEBUG", True))
ENABLE_DJANGO_ADMIN = _get_bool_env("ENABLE_DJANGO_ADMIN", DEBUG)

base_allowed_hosts = [
    "localhost",
    "127.0.0.1",
]
env_allowed_hosts = _get_list_env("DJANGO_ALLOWED_HOSTS")
ALLOWED_HOSTS = list(dict.fromkeys(base_allowed_hosts + env_allowed_hosts))
CSRF_TRUSTED_ORIGINS = _get_list_env("CSRF_TRUSTED_ORIGINS")

INSTALLED_APPS = [
    "django.contrib.admin",
    "django.contrib.auth",
    "django.contrib.contenttypes",
    "django.contrib.sessions",
    "django.contrib.messages",
    "django.contrib.staticfiles",

    # Third-party
    "rest_framework",

    # Project apps
    "core",
]

MIDDLEWARE = [
    "django.middleware.security.SecurityMiddleware",
    "django.contrib.sessions.middleware.SessionMiddleware",
    "django.middleware.common.CommonMiddleware",
    "django.middleware.csrf.CsrfViewMiddleware",
    "django.contrib.auth.middleware.AuthenticationMiddleware",
    "django.contrib.messages.middleware.MessageMiddleware",
    "django.middleware.clickjacking.XFrameOptionsMiddleware",
]


ROOT_URLCONF = "reconbooks_project.urls"

TEMPLATES = [
    {
        "BACKEND": "django.template.backends.django.DjangoTemplates",
        "DIRS": [],
        "APP_DIRS": True,
        "OPTIONS": {
            "context_processors": [
                "django.template.context_processors.debug",
                "django.template.context_processors.request",
                "django.contrib.auth.context_processors.auth",
                "django.contrib.messages.context_processors.messages",
            ],
        },
    }
]

WSGI_APPLICATION = "reconbooks_project.wsgi.application"

default_db = "sqlite:///" + str((BASE_DIR / "db.sqlite3").resolve())
database_url = os.getenv("DATABASE_URL", default_db)
DATABASES = {"default": dj_database_url.parse(database_url)}

LANGUAGE_CODE = "en-us"
TIME_ZONE = os.getenv("TIME_ZONE", "UTC")
USE_I18N = True
USE_TZ = True

STATIC_URL = "/static/"
STATIC_ROOT = BASE_DIR / "staticfiles"

REST_FRAMEWORK = {
    "DEFAULT_AUTHENTICATION_CLASSES": [
        "rest_framework.authentication.SessionAuthentication",
        "rest_framework.authentication.BasicAuthentication",
    ],
    "DEFAULT_PERMISSION_CLASSES": [
        "rest_framework.permissions.IsAuthenticated",
    ],
}

SESSION_COOKIE_HTTPONLY = True
SESSION_COOKIE_SECURE = not DEBUG
CSRF_COOKIE_SECURE = not DEBUG

DEFAULT_AUTO_FIELD = "django.db.models.BigAutoField"

# Bank matching policy. These are tuning knobs, not contracts; see
# core.services.matching_policy.MatchingPolicy for the defaults.
BANK_MATCHING = {
    "AUTO_MATCH_CONFIDENCE": _get_int_env("BANK_MATCHING_AUTO_MATCH_CONFIDENCE", 90),
    "AMBIGUITY_MARGIN": _get_int_env("BANK_MATCHING_AMBIGUITY_MARGIN", 5),
    "DISPLAY_FLOOR": _get_int_env("BANK_MATCHING_DISPLAY_FLOOR", 20),
    "MAX_SUGGESTIONS": _get_int_env("BANK_MATCHING_MAX_SUGGESTIONS", 10),
    "AMOUNT_TOLERANCE_RATIO": os.getenv("BANK_MATCHING_AMOUNT_TOLERANCE_RATIO", "0.05"),
    "DATE_WINDOW_DAYS": _get_int_env("BANK_MATCHING_DATE_WINDOW_DAYS", 30),
}

# Accepted statement date layouts, tried in order after ISO-8601.
BANK_IMPORT_DATE_FORMATS = _get_list_env("BANK_IMPORT_DATE_FORMATS") or [
    "%Y/%m/%d",
    "%d/%m/%Y",
    "%d-%m-%Y",
    "%d.%m.%Y",
    "%d %b %Y",
]

# --- Sentry & production security hardening ---

SENTRY_DSN = os.getenv("SENTRY_DSN", "")

if not DEBUG:
    # Error monitoring (Sentry)
    if SENTRY_DSN:
        sentry_sdk.init(
            dsn=SENTRY_DSN,
            integrations=[DjangoIntegration()],
            traces_sample_rate=0.1,   # sample 10% of requests for performance traces
            send_default_pii=False,
            environment=os.getenv("SENTRY_ENVIRONMENT", "production"),
        )

    SECURE_PROXY_SSL_HEADER = ("HTTP_X_FORWARDED_PROTO", "https")
    SECURE_SSL_REDIRECT = _get_bool_env("SECURE_SSL_REDIRECT", True)

    SECURE_HSTS_SECONDS = 31536000  # 1 year
    SECURE_HSTS_INCLUDE_SUBDOMAINS = True

    SESSION_COOKIE_SAMESITE = "Lax"
    CSRF_COOKIE_SAMESITE = "Lax"
    SECURE_CONTENT_TYPE_NOSNIFF = True
    X_FRAME_OPTIONS = "DENY"


LOGGING = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "simple": {
            "format": "%(asctime)s %(levelname)s %(name)s: %(message)s",
        },
    },
    "handlers": {
        "console": {
            "class": "logging.StreamHandler",
            "formatter": "simple",
        },
    },
    "loggers": {
        "core": {
            "handlers": ["console"],
            "level": os.getenv("CORE_LOG_LEVEL", "INFO"),
        },
    },
}
