import logging
from urllib.parse import parse_qs

from django.contrib.auth import get_user_model
from django.contrib.auth.models import AnonymousUser

from channels.db import database_sync_to_async
from channels.middleware import BaseMiddleware

from .exceptions import InvalidToken
from .tokens import bearer_token, decode_token


logger = logging.getLogger(__name__)


@database_sync_to_async
def get_user_for_token(token):
    if not token:
        return AnonymousUser()
    try:
        claims = decode_token(token)
    except InvalidToken:
        logger.info("Rejected websocket token")
        return AnonymousUser()
    User = get_user_model()
    return User.objects.filter(id=claims["userId"], is_active=True).first() or AnonymousUser()


def token_from_scope(scope):
    query = parse_qs(scope.get("query_string", b"").decode("latin-1"))
    if query.get("token"):
        return query["token"][0]

    for name, value in scope.get("headers", []):
        if name == b"authorization":
            return bearer_token(value.decode("latin-1"))
    return None


class TokenAuthMiddleware(BaseMiddleware):
    """Populate scope["user"] from a session token on the socket handshake."""

    async def __call__(self, scope, receive, send):
        scope = dict(scope)
        scope["user"] = await get_user_for_token(token_from_scope(scope))
        return await super().__call__(scope, receive, send)
