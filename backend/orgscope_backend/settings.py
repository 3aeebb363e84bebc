import os
import sys
from pathlib import Path
from dotenv import load_dotenv
import dj_database_url

BASE_DIR = Path(__file__).resolve().parent.parent
load_dotenv(BASE_DIR / ".env")

SECRET_KEY = os.environ.get("SECRET_KEY", os.environ.get("DJANGO_SECRET_KEY", "changeme"))
DEBUG = os.getenv("DEBUG", os.getenv("DJANGO_DEBUG", "True")) == "True"
ALLOWED_HOSTS = os.getenv("ALLOWED_HOSTS", "127.0.0.1,localhost").split(",")

# Include Django's manage.py test invocation.
TESTING = (
    "PYTEST_CURRENT_TEST" in os.environ
    or "pytest" in sys.argv[0]
    or "test" in sys.argv
)

INSTALLED_APPS = [
    "django.contrib.auth",
    "django.contrib.contenttypes",
    "rest_framework",
    "organization.apps.OrganizationConfig",
    "accounts.apps.AccountsConfig",
    "tasks.apps.TasksConfig",
]

MIDDLEWARE = [
    "django.middleware.security.SecurityMiddleware",
    "django.middleware.common.CommonMiddleware",
]

# =============================================================================
# Database Configuration
# =============================================================================
DATABASES = {
    "default": dj_database_url.config(
        env="DATABASE_URL",
        default=f"sqlite:///{BASE_DIR / 'db.sqlite3'}",
        conn_max_age=600,
    )
}

LANGUAGE_CODE = "en-us"
TIME_ZONE = "UTC"
USE_I18N = True
USE_TZ = True

DEFAULT_AUTO_FIELD = "django.db.models.BigAutoField"

AUTH_USER_MODEL = "accounts.User"

AUTH_PASSWORD_VALIDATORS = [
    {
        "NAME": "django.contrib.auth.password_validation.MinimumLengthValidator",
        "OPTIONS": {"min_length": 6},
    },
]

REST_FRAMEWORK = {
    "DEFAULT_PERMISSION_CLASSES": (
        "rest_framework.permissions.IsAuthenticated",
    )
}

# =============================================================================
# Organization hierarchy
# =============================================================================
# Run hierarchy mutations inside transaction.atomic when the backend supports
# it. When False (or on backends without transactions) the coordinator falls
# back to sequential writes and re-validates counts before destructive steps.
ORGANIZATION_ATOMIC_MUTATIONS = os.getenv("ORGANIZATION_ATOMIC_MUTATIONS", "True") == "True"

# Global bypass role: actors holding it skip role and scope checks.
ORGANIZATION_SUPERUSER_ROLE = os.getenv("ORGANIZATION_SUPERUSER_ROLE", "superuser")

# Startup integrity check of the tenant forest: "error", "warn" or "skip".
ORGANIZATION_HIERARCHY_CHECK = os.getenv(
    "ORGANIZATION_HIERARCHY_CHECK",
    "skip" if TESTING else "warn",
)

# =============================================================================
# Structured Logging Configuration
# =============================================================================
from ops.logging_config import get_logging_config
LOGGING = get_logging_config(DEBUG)

# Application version (set via CI/CD)
VERSION = os.getenv("APP_VERSION", "dev")
