from django.urls import path

from .views import conversations, messages
from .consumers import ChatConsumer

urlpatterns = [
    path("conversations", conversations, name="conversations"),
    path("messages/<int:conversation_id>", messages, name="messages"),
]

websocket_urlpatterns = [
    path('ws/chat/', ChatConsumer.as_asgi(), name='chat'), # type: ignore
]
