from rest_framework import serializers

from .models import Message


class MessageSerializer(serializers.ModelSerializer):
    conversation_id = serializers.IntegerField(read_only=True)
    sender_id = serializers.IntegerField(read_only=True, allow_null=True)
    sender_name = serializers.CharField(read_only=True, allow_null=True)

    class Meta:
        model = Message
        fields = ['id', 'conversation_id', 'sender_id', 'content', 'created_at', 'sender_name']


class ConversationSummarySerializer(serializers.Serializer):
    id = serializers.IntegerField()
    updated_at = serializers.DateTimeField()
    other_user = serializers.CharField(allow_null=True)
    other_user_id = serializers.IntegerField(allow_null=True)
    last_message = serializers.CharField(allow_null=True)
    last_message_time = serializers.DateTimeField(allow_null=True)


class CreateConversationSerializer(serializers.Serializer):
    otherUserId = serializers.IntegerField(min_value=1)


class ConversationCreatedSerializer(serializers.Serializer):
    conversationId = serializers.IntegerField()
    exists = serializers.BooleanField()
