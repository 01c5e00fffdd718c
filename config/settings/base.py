# config/settings/base.py
from pathlib import Path
import os
from dotenv import load_dotenv
from datetime import timedelta


BASE_DIR = Path(__file__).resolve().parent.parent.parent
load_dotenv(BASE_DIR / ".env")

SECRET_KEY = os.getenv("DJANGO_SECRET_KEY", "unsafe-dev-key")
DEBUG = os.getenv("DJANGO_DEBUG", "0") == "1"
ALLOWED_HOSTS = [h.strip() for h in os.getenv("DJANGO_ALLOWED_HOSTS", "*").split(",") if h.strip()]

INSTALLED_APPS = [
    # Django
    "django.contrib.admin",
    "django.contrib.auth",
    "django.contrib.contenttypes",
    "django.contrib.sessions",
    "django.contrib.messages",
    "django.contrib.staticfiles",

    # Third-party
    "corsheaders",
    "rest_framework",
    "rest_framework_simplejwt",
    "drf_spectacular",
    "django_filters",

    # Platform apps
    "rm_core.common.apps.CommonConfig",
    "rm_core.tenants.apps.TenantsConfig",
    "rm_core.facilities.apps.FacilitiesConfig",
    "rm_core.iam.apps.IamConfig",
    "rm_core.patients.apps.PatientsConfig",
    "rm_core.audit.apps.AuditConfig",
    "rm_core.alerts.apps.AlertsConfig",

    # Lifecycle apps
    "rm_core.beds.apps.BedsConfig",
    "rm_core.referrals.apps.ReferralsConfig",
    "rm_core.ambulances.apps.AmbulancesConfig",
    "rm_core.appointments.apps.AppointmentsConfig",
    "rm_core.equipment.apps.EquipmentConfig",
]

MIDDLEWARE = [
    "corsheaders.middleware.CorsMiddleware",
    "django.middleware.security.SecurityMiddleware",
    "django.contrib.sessions.middleware.SessionMiddleware",
    "django.middleware.common.CommonMiddleware",
    "django.middleware.csrf.CsrfViewMiddleware",

    "django.contrib.auth.middleware.AuthenticationMiddleware",

    # Scope enforcement needs request.user, and must run before views.
    "rm_core.common.middleware.TenantFacilityScopeMiddleware",

    "django.contrib.messages.middleware.MessageMiddleware",
    "django.middleware.clickjacking.XFrameOptionsMiddleware",
]


ROOT_URLCONF = "config.urls"

TEMPLATES = [
    {
        "BACKEND": "django.template.backends.django.DjangoTemplates",
        "DIRS": [],
        "APP_DIRS": True,
        "OPTIONS": {
            "context_processors": [
                "django.template.context_processors.request",
                "django.contrib.auth.context_processors.auth",
                "django.contrib.messages.context_processors.messages",
            ],
        },
    }
]

WSGI_APPLICATION = "config.wsgi.application"

DATABASES = {
    "default": {
        "ENGINE": os.getenv("DB_ENGINE", "django.db.backends.postgresql"),
        "NAME": os.getenv("DB_NAME", "rm"),
        "USER": os.getenv("DB_USER", "rm"),
        "PASSWORD": os.getenv("DB_PASSWORD", "rm"),
        "HOST": os.getenv("DB_HOST", "127.0.0.1"),
        "PORT": os.getenv("DB_PORT", "5432"),
    }
}

# Route progress lives in the cache; Redis when configured, process memory otherwise.
REDIS_URL = os.getenv("REDIS_URL", "")
if REDIS_URL:
    CACHES = {
        "default": {
            "BACKEND": "django.core.cache.backends.redis.RedisCache",
            "LOCATION": REDIS_URL,
            "KEY_PREFIX": "rm",
        }
    }
else:
    CACHES = {
        "default": {
            "BACKEND": "django.core.cache.backends.locmem.LocMemCache",
            "LOCATION": "rm-default",
        }
    }

AUTH_PASSWORD_VALIDATORS = [
    {"NAME": "django.contrib.auth.password_validation.UserAttributeSimilarityValidator"},
    {"NAME": "django.contrib.auth.password_validation.MinimumLengthValidator"},
    {"NAME": "django.contrib.auth.password_validation.CommonPasswordValidator"},
    {"NAME": "django.contrib.auth.password_validation.NumericPasswordValidator"},
]

LANGUAGE_CODE = "en-us"
TIME_ZONE = os.getenv("DJANGO_TIME_ZONE", "UTC")
USE_I18N = True
USE_TZ = True

STATIC_URL = "static/"
DEFAULT_AUTO_FIELD = "django.db.models.BigAutoField"

REST_FRAMEWORK = {
    "DEFAULT_AUTHENTICATION_CLASSES": (
        "rm_core.iam.auth.CookieOrHeaderJWTAuthentication",
    ),
    "DEFAULT_PERMISSION_CLASSES": (
        "rest_framework.permissions.IsAuthenticated",
    ),
    "DEFAULT_SCHEMA_CLASS": "rm_core.common.openapi.RMAutoSchema",

    # Standard error envelope
    "EXCEPTION_HANDLER": "rm_core.common.api.exceptions.api_exception_handler",

    "DEFAULT_FILTER_BACKENDS": [
        "django_filters.rest_framework.DjangoFilterBackend",
        "rest_framework.filters.OrderingFilter",
        "rest_framework.filters.SearchFilter",
    ],

    "DEFAULT_PAGINATION_CLASS": "rm_core.common.api.pagination.DefaultPagination",
}

SPECTACULAR_SETTINGS = {
    "TITLE": "RM Referral & Dispatch API",
    "DESCRIPTION": "Referral, ambulance dispatch, appointment, bed and equipment lifecycles",
    "VERSION": "0.1.0",

    "COMPONENT_SPLIT_REQUEST": True,
    "SORT_OPERATIONS": True,
    "SORT_OPERATION_PARAMETERS": True,

    # Auth scheme declared in rm_core/iam/openapi.py
    "SECURITY": [
        {"BearerOrCookieJWT": []}
    ],

    # Remove legacy /api/* endpoints, keep /api/v1/*
    "PREPROCESSING_HOOKS": [
        "rm_core.common.spectacular_hooks.preprocess_exclude_legacy_api",
    ],

    # Every lifecycle model has a "status" field; give each enum a stable name.
    "ENUM_NAME_OVERRIDES": {
        "ReferralStatusEnum": "rm_core.referrals.models.ReferralStatus",
        "DispatchStatusEnum": "rm_core.ambulances.models.DispatchStatus",
        "AmbulanceStatusEnum": "rm_core.ambulances.models.AmbulanceStatus",
        "AppointmentStatusEnum": "rm_core.appointments.models.AppointmentStatus",
        "EquipmentStatusEnum": "rm_core.equipment.models.EquipmentStatus",
        "MaintenanceStatusEnum": "rm_core.equipment.models.MaintenanceStatus",
        "BedStatusEnum": "rm_core.beds.models.BedStatus",
        "ReservationStatusEnum": "rm_core.beds.models.ReservationStatus",
        "TenantStatusEnum": "rm_core.tenants.models.TenantStatus",
    },
}

SIMPLE_JWT = {
    "ACCESS_TOKEN_LIFETIME": timedelta(minutes=10),
    "REFRESH_TOKEN_LIFETIME": timedelta(days=14),
    "ROTATE_REFRESH_TOKENS": True,
    "BLACKLIST_AFTER_ROTATION": False,
    "UPDATE_LAST_LOGIN": True,

    # Cookie settings
    "AUTH_COOKIE": "rm_access",
    "AUTH_COOKIE_REFRESH": "rm_refresh",
    "AUTH_COOKIE_SECURE": False,   # set True in production (HTTPS)
    "AUTH_COOKIE_HTTP_ONLY": True,
    "AUTH_COOKIE_SAMESITE": "Lax",
}

# CORS (development defaults; prod narrows this)
CORS_ALLOW_ALL_ORIGINS = True
CORS_ALLOW_CREDENTIALS = True

COMMON_IDEMPOTENCY_USE_DB = True

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

LOGGING = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "verbose": {
            "format": "{asctime} {levelname} {name} {message}",
            "style": "{",
        },
    },
    "handlers": {
        "console": {
            "class": "logging.StreamHandler",
            "formatter": "verbose",
        },
    },
    "root": {
        "handlers": ["console"],
        "level": "WARNING",
    },
    "loggers": {
        "django": {
            "handlers": ["console"],
            "level": os.getenv("DJANGO_LOG_LEVEL", "INFO"),
            "propagate": False,
        },
        "rm_core": {
            "handlers": ["console"],
            "level": LOG_LEVEL,
            "propagate": False,
        },
    },
}

# ---------------------------------------------------------------------------
# Lifecycle configuration
# ---------------------------------------------------------------------------

# Minutes a receiving facility has to respond, by urgency.
REFERRALS_RESPONSE_WINDOW_MINUTES = {
    "emergency": 30,
    "urgent": 120,
    "semi_urgent": 720,
    "routine": 2880,
}

APPOINTMENTS_CANCEL_CUTOFF_MINUTES = int(os.getenv("APPOINTMENTS_CANCEL_CUTOFF_MINUTES", "120"))
APPOINTMENTS_RESCHEDULE_CUTOFF_MINUTES = int(os.getenv("APPOINTMENTS_RESCHEDULE_CUTOFF_MINUTES", "240"))
APPOINTMENTS_DAY_START = os.getenv("APPOINTMENTS_DAY_START", "08:00")
APPOINTMENTS_DAY_END = os.getenv("APPOINTMENTS_DAY_END", "18:00")

BEDS_RESERVATION_TTL_MINUTES = int(os.getenv("BEDS_RESERVATION_TTL_MINUTES", "240"))

ROUTING_ESTIMATOR = os.getenv("ROUTING_ESTIMATOR", "rm_core.common.routing.HaversineRouteEstimator")
ROUTING_AVERAGE_SPEED_KMH = float(os.getenv("ROUTING_AVERAGE_SPEED_KMH", "50"))
DISPATCH_NEARBY_RADIUS_KM = float(os.getenv("DISPATCH_NEARBY_RADIUS_KM", "20"))
ROUTE_PROGRESS_CACHE_ALIAS = "default"
ROUTE_PROGRESS_TTL_SECONDS = 3600
