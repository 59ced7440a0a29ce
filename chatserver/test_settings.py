import os

os.environ.setdefault("DJANGO_SECRET_KEY", "test-only-django-secret")
os.environ.setdefault("JWT_SECRET", "test-only-jwt-secret-of-at-least-32-bytes")
os.environ.setdefault("DB_ENGINE", "sqlite")
os.environ.setdefault("DB_NAME", ":memory:")
os.environ.setdefault("LOG_LEVEL", "CRITICAL")

from .settings import *  # noqa: E402,F401,F403

PASSWORD_HASHERS = [
    "django.contrib.auth.hashers.MD5PasswordHasher",
]

PORT = None
