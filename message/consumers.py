import logging

from django.apps import apps
from django.db import DatabaseError

from channels.db import database_sync_to_async
from channels.generic.websocket import AsyncWebsocketConsumer
from rest_framework.exceptions import APIException, NotFound, PermissionDenied, ValidationError

from chatserver.exceptions import flatten_detail
from .events import ERROR, JOINED, NEW_MESSAGE, JOIN_CONVERSATION, SEND_MESSAGE, frame, parse_event
from .serializers import MessageSerializer
from .services import append, is_participant


logger = logging.getLogger(__name__)


@database_sync_to_async
def save_message(conversation_id, sender_id, content):
    if not is_participant(conversation_id, sender_id):
        raise NotFound("Conversation not found")
    message = append(conversation_id, sender_id, content)
    return dict(MessageSerializer(message).data)


class ChatConsumer(AsyncWebsocketConsumer):
    """
    One authenticated socket. The client joins conversations it takes part
    in and sends messages into them; every message is persisted before it is
    published to the sockets joined to its conversation.
    """

    async def connect(self):
        user = self.scope["user"]  # type: ignore
        if not user.is_authenticated:  # type: ignore
            await self.close()
            return

        self.user = user
        self.subscriptions = apps.get_app_config("message").subscriptions
        await self.accept()
        logger.info("User %s connected on %s", user.id, self.channel_name)

    async def disconnect(self, code):
        subscriptions = getattr(self, "subscriptions", None)
        if subscriptions is None:
            return
        await subscriptions.unsubscribe_all(self.channel_name)
        logger.info("User %s disconnected from %s (code %s)", self.user.id, self.channel_name, code)

    async def receive(self, text_data=None, bytes_data=None):
        try:
            event = parse_event(text_data)
        except ValidationError as exc:
            await self.send_error(None, exc.detail)
            return

        handler = {
            JOIN_CONVERSATION: self.join_conversation,
            SEND_MESSAGE: self.send_message,
        }[event.name]

        try:
            await handler(event.data)
        except APIException as exc:
            await self.send_error(event.name, exc.detail)
        except DatabaseError:
            logger.exception("Could not handle %s from user %s", event.name, self.user.id)
            await self.send_error(event.name, "Message could not be saved")

    async def join_conversation(self, data):
        conversation_id = data["conversationId"]
        allowed = await database_sync_to_async(is_participant)(conversation_id, self.user.id)
        if not allowed:
            raise NotFound("Conversation not found")

        await self.subscriptions.subscribe(self.channel_name, conversation_id)
        await self.send(text_data=frame(JOINED, {"conversationId": conversation_id}))

    async def send_message(self, data):
        sender_id = data.get("senderId", self.user.id)
        if sender_id != self.user.id:
            raise PermissionDenied("senderId does not match the authenticated user")

        message = await save_message(data["conversationId"], self.user.id, data["content"])
        await self.subscriptions.publish(data["conversationId"], message)

    async def new_message(self, event):
        await self.send(text_data=frame(NEW_MESSAGE, event["message"]))

    async def send_error(self, event_name, detail):
        await self.send(text_data=frame(ERROR, {
            "event": event_name,
            "error": flatten_detail(detail),
        }))
