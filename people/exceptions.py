from rest_framework import status
from rest_framework.exceptions import APIException


class InvalidToken(APIException):
    status_code = status.HTTP_403_FORBIDDEN
    default_detail = "Invalid token"
    default_code = "invalid_token"
