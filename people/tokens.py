import jwt
from django.conf import settings
from django.utils import timezone

from .exceptions import InvalidToken


def issue_token(user) -> str:
    issued_at = timezone.now()
    payload = {
        "userId": user.id,
        "username": user.username,
        "iat": issued_at,
        "exp": issued_at + settings.TOKEN_TTL,
    }
    return jwt.encode(payload, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)


def decode_token(token: str) -> dict:
    try:
        claims = jwt.decode(
            token,
            settings.JWT_SECRET,
            algorithms=[settings.JWT_ALGORITHM],
            options={"require": ["exp", "iat"]},
        )
    except jwt.PyJWTError as exc:
        raise InvalidToken() from exc

    if not isinstance(claims.get("userId"), int):
        raise InvalidToken()
    return claims


def bearer_token(header):
    """
    Extract the token from an ``Authorization: Bearer <token>`` header value,
    or None if the header is absent or uses another scheme.
    """
    if not header:
        return None
    scheme, _, token = header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()
