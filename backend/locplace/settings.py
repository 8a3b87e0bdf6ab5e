"""
Django settings for the locplace project.

Static settings come from environment variables; runtime-tunable values live
in Constance. Limiter quotas, MSG_LOC_LIMIT and ENABLE_MONITORING are read on
every request. Provider switches, API modes, timeouts and cache TTLs are read
once when the geocoding app starts, so changing them needs a restart.
"""

import os
from pathlib import Path

BASE_DIR = Path(__file__).resolve().parent.parent


def _env_bool(name: str, default: bool = False) -> bool:
    return os.environ.get(name, str(default)).lower() in ('1', 'true', 'yes', 'on')


SECRET_KEY = os.environ.get('SECRET_KEY', 'django-insecure-locplace-dev-key')
DEBUG = _env_bool('DEBUG', False)
ALLOWED_HOSTS = [h for h in os.environ.get('ALLOWED_HOSTS', 'localhost,127.0.0.1').split(',') if h]

INSTALLED_APPS = [
    'django.contrib.admin',
    'django.contrib.auth',
    'django.contrib.contenttypes',
    'django.contrib.sessions',
    'django.contrib.messages',
    'django.contrib.staticfiles',
    'rest_framework',
    'drf_spectacular',
    'constance',
    'profiles',
    'geocoding',
]

MIDDLEWARE = [
    'django.middleware.security.SecurityMiddleware',
    'django.contrib.sessions.middleware.SessionMiddleware',
    'django.middleware.common.CommonMiddleware',
    'django.middleware.csrf.CsrfViewMiddleware',
    'django.contrib.auth.middleware.AuthenticationMiddleware',
    'django.contrib.messages.middleware.MessageMiddleware',
    'django.middleware.clickjacking.XFrameOptionsMiddleware',
]

ROOT_URLCONF = 'locplace.urls'
WSGI_APPLICATION = 'locplace.wsgi.application'

TEMPLATES = [
    {
        'BACKEND': 'django.template.backends.django.DjangoTemplates',
        'DIRS': [],
        'APP_DIRS': True,
        'OPTIONS': {
            'context_processors': [
                'django.template.context_processors.request',
                'django.contrib.auth.context_processors.auth',
                'django.contrib.messages.context_processors.messages',
            ],
        },
    },
]

# The core keeps no relational state; the database only backs admin/auth
DATABASES = {
    'default': {
        'ENGINE': os.environ.get('DB_ENGINE', 'django.db.backends.sqlite3'),
        'NAME': os.environ.get('DB_NAME', str(BASE_DIR / 'db.sqlite3')),
        'USER': os.environ.get('DB_USER', ''),
        'PASSWORD': os.environ.get('DB_PASSWORD', ''),
        'HOST': os.environ.get('DB_HOST', ''),
        'PORT': os.environ.get('DB_PORT', ''),
    }
}

DEFAULT_AUTO_FIELD = 'django.db.models.BigAutoField'

LANGUAGE_CODE = 'en-us'
TIME_ZONE = 'UTC'
USE_I18N = True
USE_TZ = True

STATIC_URL = 'static/'
STATIC_ROOT = BASE_DIR / 'staticfiles'

# ==============================================================================
# REDIS (response cache + rate limiter)
# ==============================================================================

REDIS_URL = os.environ.get('REDIS_URL', 'redis://127.0.0.1:6379/0')

CACHES = {
    'default': {
        'BACKEND': 'django_redis.cache.RedisCache',
        'LOCATION': REDIS_URL,
        'OPTIONS': {
            'CLIENT_CLASS': 'django_redis.client.DefaultClient',
            'SOCKET_CONNECT_TIMEOUT': 2,
            'SOCKET_TIMEOUT': 2,
        },
        'KEY_PREFIX': 'locplace',
    }
}

# ==============================================================================
# REST FRAMEWORK
# ==============================================================================

REST_FRAMEWORK = {
    'DEFAULT_SCHEMA_CLASS': 'drf_spectacular.openapi.AutoSchema',
    'DEFAULT_PERMISSION_CLASSES': ['rest_framework.permissions.AllowAny'],
    'UNAUTHENTICATED_USER': None,
}

SPECTACULAR_SETTINGS = {
    'TITLE': 'LocPlace API',
    'DESCRIPTION': 'Location resolution backed by several geocoding providers',
    'VERSION': '0.1.0',
}

# ==============================================================================
# GEOCODING PROVIDERS
# ==============================================================================

GOOGLE_MAPS_API_KEY = os.environ.get('GOOGLE_MAPS_API_KEY', '')
YANDEX_MAPS_GEOCODER_API_KEY = os.environ.get('YANDEX_MAPS_GEOCODER_API_KEY', '')
YANDEX_MAPS_PLACES_API_KEY = os.environ.get('YANDEX_MAPS_PLACES_API_KEY', '')
NOMINATIM_USER_AGENT = os.environ.get('NOMINATIM_USER_AGENT', 'locplace/0.1 (+https://nominatim.org/release-docs/latest/api/Overview/)')

# Provider order per locale. Providers are tried one at a time, first non-empty
# result wins. Locales without an entry use the "global" order.
GEOCODING_SEARCH_CHAIN = {
    'global': ['osm', 'google'],
    'ru': ['yandex'],
}

# Start the profile cache sweeper when the geocoding app is loaded
PROFILE_CACHE_SWEEPER_AUTOSTART = _env_bool('PROFILE_CACHE_SWEEPER_AUTOSTART', True)

# ==============================================================================
# USER SERVICE
# ==============================================================================

# Leave empty to run without the profile service (no language/location hints)
USER_SERVICE_URL = os.environ.get('USER_SERVICE_URL', '')
USER_SERVICE_TIMEOUT_SECS = float(os.environ.get('USER_SERVICE_TIMEOUT_SECS', '3'))

# ==============================================================================
# CONSTANCE (runtime configuration)
# ==============================================================================

CONSTANCE_BACKEND = 'constance.backends.redisd.RedisBackend'
CONSTANCE_REDIS_CONNECTION = REDIS_URL
CONSTANCE_REDIS_PREFIX = 'constance:locplace:'

CONSTANCE_CONFIG = {
    # Provider switches
    'OSM_ENABLED': (True, 'Query OpenStreetMap Nominatim'),
    'GOOGLE_MAPS_ENABLED': (True, 'Query Google Maps (metered)'),
    'YANDEX_MAPS_ENABLED': (True, 'Query Yandex Maps (metered)'),
    'GOOGLE_API_MODE': ('GeoText', 'Google Maps mode: Text or GeoText (geocoding first, text search if empty)'),
    'YANDEX_API_MODE': ('Geocode', 'Yandex Maps mode: Geocode, Place or GeoPlace'),
    'PROVIDER_REQUEST_TIMEOUT_SECS': (10, 'Timeout for a single provider HTTP call (seconds)'),
    'SEARCH_RADIUS_METERS': (10000, 'Radius around the user location used to bias provider queries'),
    'MSG_LOC_LIMIT': (10, 'Maximum number of locations returned per query'),

    # Response cache
    'RESPONSE_CACHE_ENABLED': (True, 'Serve provider responses from the shared cache'),
    'RESPONSE_CACHE_DEFAULT_TTL_SECS': (86400, 'Freshness lifetime for responses without caching headers'),
    'RESPONSE_CACHE_REVALIDATION_GRACE_SECS': (86400, 'How long stale entries with validators are kept for revalidation'),

    # Rate limiter
    'REQUESTS_LIMITER_ENABLED': (True, 'Enforce the per-user request limit'),
    'REQUESTS_LIMITER_MAX_ALLOWED': (10, 'Maximum requests per user within the timeframe'),
    'REQUESTS_LIMITER_TIMEFRAME': (60, 'Rolling rate limit window (seconds)'),

    # Profile cache
    'USER_CACHE_TIME_SECS': (360, 'How long a user profile lookup is cached (seconds)'),
    'CACHE_CLEAN_UP_INTERVAL_SECS': (3600, 'How often stale profiles are swept from memory (seconds)'),

    # Monitoring
    'ENABLE_MONITORING': (True, 'Record provider request/response events for the admin monitor'),
}

CONSTANCE_CONFIG_FIELDSETS = {
    'Providers': (
        'OSM_ENABLED', 'GOOGLE_MAPS_ENABLED', 'YANDEX_MAPS_ENABLED',
        'GOOGLE_API_MODE', 'YANDEX_API_MODE', 'PROVIDER_REQUEST_TIMEOUT_SECS',
        'SEARCH_RADIUS_METERS', 'MSG_LOC_LIMIT',
    ),
    'Response Cache': (
        'RESPONSE_CACHE_ENABLED', 'RESPONSE_CACHE_DEFAULT_TTL_SECS',
        'RESPONSE_CACHE_REVALIDATION_GRACE_SECS',
    ),
    'Rate Limiting': (
        'REQUESTS_LIMITER_ENABLED', 'REQUESTS_LIMITER_MAX_ALLOWED', 'REQUESTS_LIMITER_TIMEFRAME',
    ),
    'Profile Cache': ('USER_CACHE_TIME_SECS', 'CACHE_CLEAN_UP_INTERVAL_SECS'),
    'Monitoring': ('ENABLE_MONITORING',),
}

# ==============================================================================
# LOGGING
# ==============================================================================

LOG_LEVEL = os.environ.get('LOG_LEVEL', 'INFO')

LOGGING = {
    'version': 1,
    'disable_existing_loggers': False,
    'formatters': {
        'verbose': {
            'format': '{asctime} {levelname} {name}: {message}',
            'style': '{',
        },
    },
    'handlers': {
        'console': {
            'class': 'logging.StreamHandler',
            'formatter': 'verbose',
        },
    },
    'root': {
        'handlers': ['console'],
        'level': LOG_LEVEL,
    },
    'loggers': {
        'django': {
            'handlers': ['console'],
            'level': os.environ.get('DJANGO_LOG_LEVEL', 'INFO'),
            'propagate': False,
        },
    },
}
