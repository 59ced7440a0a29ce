"""
ASGI config for chatserver project.

It exposes the ASGI callable as a module-level variable named ``application``.

For more information on this file, see
https://docs.djangoproject.com/en/5.0/howto/deployment/asgi/
"""

import os

from django.core.asgi import get_asgi_application

os.environ.setdefault('DJANGO_SETTINGS_MODULE', 'chatserver.settings')

django_asgi_application = get_asgi_application()

from django.conf import settings  # noqa: E402

from channels.routing import ProtocolTypeRouter, URLRouter  # noqa: E402
from channels.security.websocket import OriginValidator  # noqa: E402

from people.middleware import TokenAuthMiddleware  # noqa: E402
from message.urls import websocket_urlpatterns  # noqa: E402


def websocket_application(allowed_origins):
    """Socket stack: origin check, then token auth, then routing."""
    return OriginValidator(
        TokenAuthMiddleware(URLRouter(websocket_urlpatterns)),
        allowed_origins,
    )


application = ProtocolTypeRouter({
    "http": django_asgi_application,
    "websocket": websocket_application(settings.WEBSOCKET_ALLOWED_ORIGINS),
})
