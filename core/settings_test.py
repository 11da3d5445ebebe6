# core/settings_test.py
from core.settings import *  # noqa: F401,F403

SECRET_KEY = "test-secret-key"
DEBUG = False

DATABASES = {
    "default": {
        "ENGINE": "django.db.backends.sqlite3",
        "NAME": ":memory:",
    }
}

PASSWORD_HASHERS = ["django.contrib.auth.hashers.MD5PasswordHasher"]

STORAGES = {
    "default": {
        "BACKEND": "django.core.files.storage.FileSystemStorage",
    },
    "staticfiles": {
        "BACKEND": "django.contrib.staticfiles.storage.StaticFilesStorage",
    },
}

# Los tests sobreescriben la ruta con override_settings + directorio temporal
SRI_XML_ROOT = BASE_DIR / "storage" / "test-comprobantes"  # noqa: F405

LOGGING["loggers"]["fiscal"]["handlers"] = ["console"]  # noqa: F405
