import logging

from django.db import IntegrityError, transaction
from django.db.models import F, OuterRef, Subquery
from rest_framework.exceptions import NotFound, ValidationError

from .models import Conversation, ConversationParticipant, Message, pair_key


logger = logging.getLogger(__name__)

# =============== conversations ==========================

def find_conversation(user_a_id, user_b_id):
    # each filter() on the multi-valued relation joins participants again
    return Conversation.objects.filter(
        participants__user_id=user_a_id
    ).filter(
        participants__user_id=user_b_id
    ).first()


def find_or_create(user_a_id, user_b_id):
    """
    Return the conversation between two users and whether it already existed,
    creating it (with both participant rows) if needed.

    Creation is one transaction guarded by the unique pair key, so a caller
    racing another request for the same pair gets the row the winner
    committed instead of a duplicate.
    """
    if int(user_a_id) == int(user_b_id):
        raise ValidationError("Cannot start a conversation with yourself")

    conversation = find_conversation(user_a_id, user_b_id)
    if conversation is not None:
        return conversation, True

    key = pair_key(user_a_id, user_b_id)
    try:
        with transaction.atomic():
            conversation = Conversation.objects.create(pair_key=key)
            ConversationParticipant.objects.bulk_create([
                ConversationParticipant(conversation=conversation, user_id=user_a_id),
                ConversationParticipant(conversation=conversation, user_id=user_b_id),
            ])
    except IntegrityError:
        conversation = Conversation.objects.filter(pair_key=key).first()
        if conversation is None:
            raise
        logger.info("Conversation %s for pair %s was created concurrently", conversation.pk, key)
        return conversation, True

    logger.info("Created conversation %s for pair %s", conversation.pk, key)
    return conversation, False


def is_participant(conversation_id, user_id) -> bool:
    return ConversationParticipant.objects.filter(
        conversation_id=conversation_id, user_id=user_id
    ).exists()


def touch(conversation_id, at):
    Conversation.objects.filter(id=conversation_id).update(updated_at=at)


def list_for_user(user_id):
    """
    Conversations of a user, most recently active first, each with the other
    participant and a preview of the newest message (null when empty).
    """
    other = ConversationParticipant.objects.filter(
        conversation=OuterRef("pk")
    ).exclude(
        user_id=user_id
    )
    latest = Message.objects.filter(
        conversation=OuterRef("pk")
    ).order_by("-created_at", "-id")

    return Conversation.objects.filter(
        participants__user_id=user_id
    ).annotate(
        other_user=Subquery(other.values("user__username")[:1]),
        other_user_id=Subquery(other.values("user_id")[:1]),
        last_message=Subquery(latest.values("content")[:1]),
        last_message_time=Subquery(latest.values("created_at")[:1]),
    ).order_by(
        "-updated_at", "-id"
    ).values(
        "id", "updated_at", "other_user", "other_user_id", "last_message", "last_message_time"
    )

# =============== messages ==========================

def with_sender_name(queryset):
    return queryset.annotate(sender_name=F("sender__username"))


def append(conversation_id, sender_id, content):
    with transaction.atomic():
        # the row lock serialises appends within one conversation
        conversation = Conversation.objects.select_for_update().filter(id=conversation_id).first()
        if conversation is None:
            raise NotFound("Conversation not found")

        message = Message.objects.create(
            conversation=conversation,
            sender_id=sender_id,
            content=content,
        )
        touch(conversation.id, message.created_at)

    return with_sender_name(Message.objects.filter(id=message.id)).get()


def list_messages(conversation_id):
    return with_sender_name(
        Message.objects.filter(conversation_id=conversation_id)
    ).order_by("created_at", "id")
