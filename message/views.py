from django.contrib.auth import get_user_model
from rest_framework.decorators import api_view
from rest_framework.exceptions import NotFound
from rest_framework.response import Response
from drf_yasg.utils import swagger_auto_schema

from .serializers import (
    ConversationCreatedSerializer,
    ConversationSummarySerializer,
    CreateConversationSerializer,
    MessageSerializer,
)
from .services import find_or_create, is_participant, list_for_user, list_messages


User = get_user_model()

# =============== conversations ==========================

@swagger_auto_schema(method="get", responses={200: ConversationSummarySerializer(many=True)})
@swagger_auto_schema(
    method="post",
    request_body=CreateConversationSerializer,
    responses={200: ConversationCreatedSerializer},
)
@api_view(["GET", "POST"])
def conversations(request):
    if request.method == "GET":
        summaries = list_for_user(request.user.id)
        return Response(ConversationSummarySerializer(summaries, many=True).data)

    serializer = CreateConversationSerializer(data=request.data)
    serializer.is_valid(raise_exception=True)
    other_id = serializer.validated_data["otherUserId"]

    if not User.objects.filter(id=other_id).exists():
        raise NotFound("User not found")

    conversation, existed = find_or_create(request.user.id, other_id)
    return Response({"conversationId": conversation.id, "exists": existed})

# =============== messages ==========================

@swagger_auto_schema(method="get", responses={200: MessageSerializer(many=True)})
@api_view(["GET"])
def messages(request, conversation_id: int):
    # non participants get the same answer as for a missing conversation
    if not is_participant(conversation_id, request.user.id):
        raise NotFound("Conversation not found")

    return Response(MessageSerializer(list_messages(conversation_id), many=True).data)
