import os
import subprocess
import sys
from unittest.mock import patch

from django.conf import settings
from django.core.exceptions import ImproperlyConfigured
from django.test import SimpleTestCase, override_settings
from django.urls import reverse

from .settings import require_env


# ── Project Wiring ─────────────────────────────────────────────────────────


class ImportTest(SimpleTestCase):
    def _import_in_fresh_interpreter(self, module):
        # modules already loaded by the test run would hide an import cycle
        env = dict(os.environ, DJANGO_SETTINGS_MODULE="chatserver.test_settings")
        code = f"import django; django.setup(); import {module}"
        return subprocess.run(
            [sys.executable, "-c", code],
            cwd=settings.BASE_DIR,
            env=env,
            capture_output=True,
            text=True,
        )

    def test_urlconf_imports_on_its_own(self):
        result = self._import_in_fresh_interpreter("chatserver.urls")
        self.assertEqual(result.returncode, 0, result.stderr)

    def test_asgi_application_imports_on_its_own(self):
        result = self._import_in_fresh_interpreter("chatserver.asgi")
        self.assertEqual(result.returncode, 0, result.stderr)


# ── Configuration ──────────────────────────────────────────────────────────


class RequireEnvTest(SimpleTestCase):
    def test_missing_value_refused(self):
        with patch.dict(os.environ, {}, clear=True):
            with self.assertRaises(ImproperlyConfigured):
                require_env("JWT_SECRET")

    def test_short_value_refused(self):
        with patch.dict(os.environ, {"JWT_SECRET": "x" * 31}):
            with self.assertRaises(ImproperlyConfigured):
                require_env("JWT_SECRET", min_length=32)

    def test_long_enough_value_returned(self):
        with patch.dict(os.environ, {"JWT_SECRET": "x" * 32}):
            self.assertEqual(require_env("JWT_SECRET", min_length=32), "x" * 32)

    def test_test_secret_is_long_enough_for_hmac(self):
        self.assertGreaterEqual(len(settings.JWT_SECRET.encode()), 32)


# ── Cross-origin Access ────────────────────────────────────────────────────


class CorsTest(SimpleTestCase):
    def _preflight(self, origin):
        return self.client.options(
            reverse("login"),
            HTTP_ORIGIN=origin,
            HTTP_ACCESS_CONTROL_REQUEST_METHOD="POST",
            HTTP_ACCESS_CONTROL_REQUEST_HEADERS="content-type,authorization",
        )

    def test_any_origin_allowed_by_default(self):
        resp = self._preflight("http://frontend.example")
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.headers.get("Access-Control-Allow-Origin"), "*")
        self.assertIn("authorization", resp.headers.get("Access-Control-Allow-Headers", ""))

    @override_settings(CORS_ALLOW_ALL_ORIGINS=False, CORS_ALLOWED_ORIGINS=["http://frontend.example"])
    def test_listed_origin_allowed(self):
        resp = self._preflight("http://frontend.example")
        self.assertEqual(resp.headers.get("Access-Control-Allow-Origin"), "http://frontend.example")

    @override_settings(CORS_ALLOW_ALL_ORIGINS=False, CORS_ALLOWED_ORIGINS=["http://frontend.example"])
    def test_unlisted_origin_gets_no_allow_header(self):
        resp = self._preflight("http://elsewhere.example")
        self.assertIsNone(resp.headers.get("Access-Control-Allow-Origin"))
