from datetime import timedelta
from unittest.mock import patch

import factory
import jwt
from django.conf import settings
from django.contrib.auth import get_user_model
from django.db import DatabaseError
from django.test import TestCase, override_settings
from django.urls import reverse
from django.utils import timezone
from faker import Faker

from .exceptions import InvalidToken
from .tokens import bearer_token, decode_token, issue_token

User = get_user_model()
fake = Faker()


class UserFactory(factory.django.DjangoModelFactory):
    class Meta:
        model = User

    username = factory.LazyFunction(lambda: fake.unique.user_name())
    email = factory.LazyFunction(lambda: fake.unique.email())
    password = factory.PostGenerationMethodCall("set_password", "testpass123")


def auth_header(user):
    return {"HTTP_AUTHORIZATION": f"Bearer {issue_token(user)}"}


# ── Token Tests ────────────────────────────────────────────────────────────


class TokenTest(TestCase):
    def setUp(self):
        self.user = UserFactory()

    def test_issued_token_carries_identity(self):
        claims = decode_token(issue_token(self.user))
        self.assertEqual(claims["userId"], self.user.id)
        self.assertEqual(claims["username"], self.user.username)

    def test_token_signed_with_other_secret_rejected(self):
        token = jwt.encode(
            {"userId": self.user.id, "iat": timezone.now(), "exp": timezone.now() + timedelta(hours=1)},
            "another-secret-of-at-least-32-bytes-long",
            algorithm="HS256",
        )
        with self.assertRaises(InvalidToken):
            decode_token(token)

    def test_expired_token_rejected(self):
        with override_settings(TOKEN_TTL=timedelta(seconds=-1)):
            token = issue_token(self.user)
        with self.assertRaises(InvalidToken):
            decode_token(token)

    def test_token_without_expiry_rejected(self):
        token = jwt.encode({"userId": self.user.id}, settings.JWT_SECRET, algorithm="HS256")
        with self.assertRaises(InvalidToken):
            decode_token(token)

    def test_bearer_token_parsing(self):
        self.assertEqual(bearer_token("Bearer abc"), "abc")
        self.assertEqual(bearer_token("bearer abc "), "abc")
        self.assertIsNone(bearer_token("Basic abc"))
        self.assertIsNone(bearer_token("Bearer"))
        self.assertIsNone(bearer_token(None))


# ── Registration / Login ───────────────────────────────────────────────────


class RegisterViewTest(TestCase):
    def setUp(self):
        self.url = reverse("register")

    def _post(self, **overrides):
        data = {
            "username": fake.unique.user_name(),
            "email": fake.unique.email(),
            "password": "pw1",
        }
        data.update(overrides)
        return self.client.post(self.url, data, content_type="application/json")

    def test_register_returns_token_and_identity(self):
        resp = self._post(username="alice", email="alice@x.com")
        self.assertEqual(resp.status_code, 200)
        body = resp.json()
        user = User.objects.get(username="alice")
        self.assertEqual(body["userId"], user.id)
        self.assertEqual(body["username"], "alice")
        self.assertEqual(decode_token(body["token"])["userId"], user.id)

    def test_password_is_hashed(self):
        self._post(username="alice", email="alice@x.com", password="pw1")
        user = User.objects.get(username="alice")
        self.assertNotEqual(user.password, "pw1")
        self.assertTrue(user.check_password("pw1"))

    def test_duplicate_username_rejected(self):
        existing = UserFactory()
        resp = self._post(username=existing.username)
        self.assertEqual(resp.status_code, 400)
        self.assertEqual(resp.json(), {"error": "User already exists"})

    def test_duplicate_email_rejected(self):
        existing = UserFactory()
        resp = self._post(email=existing.email)
        self.assertEqual(resp.status_code, 400)
        self.assertEqual(User.objects.filter(email=existing.email).count(), 1)

    def test_missing_fields_rejected_with_error_body(self):
        resp = self.client.post(self.url, {"username": "alice"}, content_type="application/json")
        self.assertEqual(resp.status_code, 400)
        self.assertIn("email", resp.json()["error"])
        self.assertIn("password", resp.json()["error"])

    def test_username_with_disallowed_characters_rejected(self):
        resp = self._post(username="alice smith!")
        self.assertEqual(resp.status_code, 400)
        self.assertIn("username", resp.json()["error"])
        self.assertFalse(User.objects.filter(username="alice smith!").exists())


class LoginViewTest(TestCase):
    def setUp(self):
        self.url = reverse("login")
        self.user = UserFactory(email="alice@x.com")

    def _post(self, email, password):
        return self.client.post(
            self.url, {"email": email, "password": password}, content_type="application/json"
        )

    def test_login_with_valid_credentials(self):
        resp = self._post("alice@x.com", "testpass123")
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.json()["userId"], self.user.id)
        self.assertEqual(resp.json()["username"], self.user.username)

    def test_wrong_password_rejected(self):
        resp = self._post("alice@x.com", "nope")
        self.assertEqual(resp.status_code, 400)
        self.assertEqual(resp.json(), {"error": "Incorrect password"})

    def test_unknown_email_rejected(self):
        resp = self._post("nobody@x.com", "testpass123")
        self.assertEqual(resp.status_code, 400)
        self.assertEqual(resp.json(), {"error": "User not found"})


# ── Users / Authentication ─────────────────────────────────────────────────


class UsersViewTest(TestCase):
    def setUp(self):
        self.user = UserFactory()
        self.others = UserFactory.create_batch(3)
        self.url = reverse("users")

    def test_missing_token_returns_401(self):
        resp = self.client.get(self.url)
        self.assertEqual(resp.status_code, 401)
        self.assertIn("error", resp.json())

    def test_invalid_token_returns_403(self):
        resp = self.client.get(self.url, HTTP_AUTHORIZATION="Bearer not-a-token")
        self.assertEqual(resp.status_code, 403)
        self.assertEqual(resp.json(), {"error": "Invalid token"})

    def test_token_for_deleted_user_returns_403(self):
        headers = auth_header(self.user)
        self.user.delete()
        resp = self.client.get(self.url, **headers)
        self.assertEqual(resp.status_code, 403)

    def test_excludes_current_user(self):
        resp = self.client.get(self.url, **auth_header(self.user))
        self.assertEqual(resp.status_code, 200)
        ids = [row["id"] for row in resp.json()]
        self.assertNotIn(self.user.id, ids)
        self.assertEqual(ids, sorted(other.id for other in self.others))

    def test_rows_have_public_fields_only(self):
        resp = self.client.get(self.url, **auth_header(self.user))
        self.assertEqual(set(resp.json()[0]), {"id", "username", "email"})

    def test_storage_failure_returns_500_without_internals(self):
        with patch("people.views.UserSerializer", side_effect=DatabaseError("disk on fire")):
            resp = self.client.get(self.url, **auth_header(self.user))
        self.assertEqual(resp.status_code, 500)
        self.assertEqual(resp.json(), {"error": "Database error"})
