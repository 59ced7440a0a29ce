from django.contrib.auth import get_user_model
from rest_framework.authentication import BaseAuthentication, get_authorization_header

from .exceptions import InvalidToken
from .tokens import bearer_token, decode_token


User = get_user_model()


class BearerTokenAuthentication(BaseAuthentication):
    """
    Stateless bearer token authentication.

    A request without a bearer token is left unauthenticated, which the
    permission check turns into a 401. A token that fails verification, or
    names a user that no longer exists, is rejected with a 403.
    """
    keyword = "Bearer"

    def authenticate(self, request):
        header = get_authorization_header(request).decode("latin-1")
        token = bearer_token(header)
        if token is None:
            return None

        claims = decode_token(token)
        user = User.objects.filter(id=claims["userId"], is_active=True).first()
        if user is None:
            raise InvalidToken()
        return user, claims

    def authenticate_header(self, request):
        return self.keyword
