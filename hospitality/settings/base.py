"""
Base settings for the hospitality project.
Shared between local (branch) and cloud deployments.
"""

from pathlib import Path
import os

from django.urls import reverse_lazy

# Build paths inside the project like this: BASE_DIR / 'subdir'.
BASE_DIR = Path(__file__).resolve().parent.parent.parent


# SECURITY WARNING: keep the secret key used in production secret!
SECRET_KEY = os.getenv('SECRET_KEY', 'django-insecure-local-only-key-change-me')

# SECURITY WARNING: don't run with debug turned on in production!
DEBUG = os.getenv('DEBUG', 'True').lower() == 'true'

ALLOWED_HOSTS = os.getenv('ALLOWED_HOSTS', '*').split(',')


# Application definition
INSTALLED_APPS = [
    "unfold",
    "unfold.contrib.filters",
    'django.contrib.admin',
    'django.contrib.auth',
    'django.contrib.contenttypes',
    'django.contrib.sessions',
    'django.contrib.messages',
    'django.contrib.staticfiles',
    'inventory',
    'corsheaders',
    'rest_framework',
    'drf_spectacular',
]

MIDDLEWARE = [
    'django.middleware.security.SecurityMiddleware',
    'django.contrib.sessions.middleware.SessionMiddleware',
    'corsheaders.middleware.CorsMiddleware',
    'django.middleware.common.CommonMiddleware',
    'django.middleware.csrf.CsrfViewMiddleware',
    'django.contrib.auth.middleware.AuthenticationMiddleware',
    'django.contrib.messages.middleware.MessageMiddleware',
    'django.middleware.clickjacking.XFrameOptionsMiddleware',
]

ROOT_URLCONF = 'hospitality.urls'

TEMPLATES = [
    {
        'BACKEND': 'django.template.backends.django.DjangoTemplates',
        'DIRS': [BASE_DIR / 'templates'],
        'APP_DIRS': True,
        'OPTIONS': {
            'context_processors': [
                'django.template.context_processors.debug',
                'django.template.context_processors.request',
                'django.contrib.auth.context_processors.auth',
                'django.contrib.messages.context_processors.messages',
            ],
        },
    },
]

WSGI_APPLICATION = 'hospitality.wsgi.application'


# Password validation
AUTH_PASSWORD_VALIDATORS = [
    {'NAME': 'django.contrib.auth.password_validation.UserAttributeSimilarityValidator'},
    {'NAME': 'django.contrib.auth.password_validation.MinimumLengthValidator'},
    {'NAME': 'django.contrib.auth.password_validation.CommonPasswordValidator'},
    {'NAME': 'django.contrib.auth.password_validation.NumericPasswordValidator'},
]


# Internationalization
LANGUAGE_CODE = 'en-us'
TIME_ZONE = os.getenv('TIME_ZONE', 'Asia/Kathmandu')
USE_I18N = True
USE_TZ = True


# Static files
STATIC_URL = 'static/'
STATIC_ROOT = BASE_DIR / 'staticfiles'


# CORS
CORS_ALLOW_ALL_ORIGINS = True


# Default primary key field type
DEFAULT_AUTO_FIELD = 'django.db.models.BigAutoField'


# =============================================================================
# INVENTORY
# =============================================================================
# Telegram channel for low-stock and consistency alerts (disabled when empty)
TELEGRAM_BOT_TOKEN = os.getenv('TELEGRAM_BOT_TOKEN', '')
TELEGRAM_CHAT_ID = os.getenv('TELEGRAM_CHAT_ID', '')

# Minutes between low-stock sweeps of run_low_stock_monitor
LOW_STOCK_CHECK_INTERVAL = int(os.getenv('LOW_STOCK_CHECK_INTERVAL', '30'))

# How long a sent low-stock notification suppresses repeats (seconds)
LOW_STOCK_NOTIFICATION_TTL = int(os.getenv('LOW_STOCK_NOTIFICATION_TTL', str(7 * 24 * 3600)))

# Push stock changes to the channel layer group "inventory_updates"
REALTIME_UPDATES_ENABLED = os.getenv('REALTIME_UPDATES_ENABLED', 'False').lower() == 'true'


# Unfold Admin Configuration
UNFOLD = {
    "SITE_TITLE": "Hospitality Inventory Admin",
    "SITE_HEADER": "Hospitality Inventory",
    "SITE_URL": "/",
    "SITE_SYMBOL": "inventory_2",

    "SIDEBAR": {
        "show_search": True,
        "show_all_applications": True,
        "navigation": [
            {
                "title": "Catalog",
                "separator": False,
                "items": [
                    {
                        "title": "Stock Items",
                        "icon": "inventory_2",
                        "link": reverse_lazy("admin:inventory_stockitem_changelist"),
                    },
                    {
                        "title": "Recipes",
                        "icon": "menu_book",
                        "link": reverse_lazy("admin:inventory_recipeline_changelist"),
                    },
                    {
                        "title": "Suppliers",
                        "icon": "local_shipping",
                        "link": reverse_lazy("admin:inventory_supplier_changelist"),
                    },
                ],
            },
            {
                "title": "Purchasing",
                "separator": True,
                "items": [
                    {
                        "title": "Purchase Orders",
                        "icon": "shopping_cart",
                        "link": reverse_lazy("admin:inventory_purchaseorder_changelist"),
                    },
                    {
                        "title": "Receipts",
                        "icon": "receipt_long",
                        "link": reverse_lazy("admin:inventory_stockreceipt_changelist"),
                    },
                ],
            },
            {
                "title": "Valuation",
                "separator": True,
                "items": [
                    {
                        "title": "Cost Lots",
                        "icon": "layers",
                        "link": reverse_lazy("admin:inventory_costlot_changelist"),
                    },
                    {
                        "title": "Consumption",
                        "icon": "restaurant",
                        "link": reverse_lazy("admin:inventory_consumptionrecord_changelist"),
                    },
                    {
                        "title": "Movements",
                        "icon": "swap_vert",
                        "link": reverse_lazy("admin:inventory_stockmovement_changelist"),
                    },
                ],
            },
        ],
    },
}

REST_FRAMEWORK = {
    'DEFAULT_SCHEMA_CLASS': 'drf_spectacular.openapi.AutoSchema',

    'DEFAULT_RENDERER_CLASSES': [
        'rest_framework.renderers.JSONRenderer',
        'rest_framework.renderers.BrowsableAPIRenderer',
    ],
}


SPECTACULAR_SETTINGS = {
    'TITLE': 'Hospitality Inventory',
    'DESCRIPTION': 'Inventory valuation and consumption API',
    'VERSION': '1.0.0',
}
