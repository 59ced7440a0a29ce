import logging

from django.db import DatabaseError
from rest_framework import status
from rest_framework.exceptions import APIException
from rest_framework.response import Response
from rest_framework.views import exception_handler, set_rollback


logger = logging.getLogger(__name__)


class StorageError(APIException):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_detail = "Database error"
    default_code = "storage_error"


def flatten_detail(detail):
    """
    Collapse a DRF error detail (string, list or field dict) into one
    human readable line.
    """
    if isinstance(detail, dict):
        parts = []
        for field, errors in detail.items():
            message = flatten_detail(errors)
            parts.append(message if field == "non_field_errors" else f"{field}: {message}")
        return "; ".join(parts)
    if isinstance(detail, (list, tuple)):
        return "; ".join(flatten_detail(item) for item in detail)
    return str(detail)


def api_exception_handler(exc, context):
    view = context.get("view")

    if isinstance(exc, DatabaseError):
        logger.exception("Database error in %s", type(view).__name__ if view else "request")
        exc = StorageError()

    response = exception_handler(exc, context)
    if response is None:
        logger.exception("Unhandled error in %s", type(view).__name__ if view else "request")
        set_rollback()
        return Response(
            {"error": "Internal server error"},
            status=status.HTTP_500_INTERNAL_SERVER_ERROR,
        )

    data = response.data
    if isinstance(data, dict) and set(data) == {"detail"}:
        data = data["detail"]
    response.data = {"error": flatten_detail(data)}
    return response
