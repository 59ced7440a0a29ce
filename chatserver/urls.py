"""
URL configuration for chatserver project.

The JSON API lives at the root (register, login, users, conversations,
messages), the Swagger UI under docs/ and the Django admin under admin/.
"""
from django.contrib import admin
from django.urls import path, include

from rest_framework import permissions

from drf_yasg import openapi
from drf_yasg.views import get_schema_view as get_swagger_schema_view

schema_view = get_swagger_schema_view(
    openapi.Info(
        title="Chat API",
        default_version="1.0.0",
        description="API documentation for the direct messaging service"
    ),
    public=True,
    permission_classes=[permissions.AllowAny],
    authentication_classes=[],
)


urlpatterns = [
    path('admin/', admin.site.urls),
    path("", include("people.urls")),
    path("", include("message.urls")),
    path("docs/", schema_view.with_ui("swagger", cache_timeout=10), name="docs"),
]
