"""
Wire format of the chat socket.

Every frame is a JSON object ``{"event": <name>, "data": {...}}``. Client
events are validated against the serializer registered for their name, so
handlers only ever see the declared fields.
"""
import json
from dataclasses import dataclass

from django.conf import settings
from rest_framework import serializers
from rest_framework.exceptions import ValidationError


JOIN_CONVERSATION = "join_conversation"
SEND_MESSAGE = "send_message"

JOINED = "joined"
NEW_MESSAGE = "new_message"
ERROR = "error"


class JoinConversationEvent(serializers.Serializer):
    conversationId = serializers.IntegerField(min_value=1)


class SendMessageEvent(serializers.Serializer):
    conversationId = serializers.IntegerField(min_value=1)
    senderId = serializers.IntegerField(required=False, min_value=1)
    content = serializers.CharField(
        max_length=settings.MESSAGE_MAX_LENGTH,
        trim_whitespace=False,
    )


CLIENT_EVENTS = {
    JOIN_CONVERSATION: JoinConversationEvent,
    SEND_MESSAGE: SendMessageEvent,
}


@dataclass(frozen=True)
class ClientEvent:
    name: str
    data: dict


def parse_event(text_data) -> ClientEvent:
    try:
        payload = json.loads(text_data or "")
    except ValueError:
        raise ValidationError("Frame is not valid JSON")

    if not isinstance(payload, dict):
        raise ValidationError("Frame must be a JSON object")

    name = payload.get("event")
    schema = CLIENT_EVENTS.get(name)
    if schema is None:
        raise ValidationError(f"Unknown event {name!r}")

    serializer = schema(data=payload.get("data"))
    serializer.is_valid(raise_exception=True)
    return ClientEvent(name=name, data=dict(serializer.validated_data))


def frame(name, data) -> str:
    return json.dumps({"event": name, "data": data})
