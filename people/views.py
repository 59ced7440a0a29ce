import logging

from django.contrib.auth import get_user_model
from django.db import IntegrityError, transaction
from django.db.models import Q
from rest_framework.decorators import api_view, authentication_classes, permission_classes
from rest_framework.exceptions import ValidationError
from rest_framework.permissions import AllowAny
from rest_framework.response import Response
from drf_yasg.utils import swagger_auto_schema

from .serializers import AuthResponseSerializer, LoginSerializer, RegisterSerializer, UserSerializer
from .tokens import issue_token


logger = logging.getLogger(__name__)

User = get_user_model()


def auth_payload(user):
    return {
        "token": issue_token(user),
        "userId": user.id,
        "username": user.username,
    }

# ============= Authentication ===============
@swagger_auto_schema(method="post", request_body=RegisterSerializer, responses={200: AuthResponseSerializer})
@api_view(["POST"])
@authentication_classes([])
@permission_classes([AllowAny])
def register(request):
    serializer = RegisterSerializer(data=request.data)
    serializer.is_valid(raise_exception=True)
    data = serializer.validated_data
    email = User.objects.normalize_email(data["email"])

    if User.objects.filter(Q(username=data["username"]) | Q(email=email)).exists():
        raise ValidationError("User already exists")

    try:
        with transaction.atomic():
            user = User.objects.create_user(
                username=data["username"],
                email=email,
                password=data["password"],
            )
    except IntegrityError:
        # lost a race with a concurrent registration
        raise ValidationError("User already exists")

    logger.info("Registered user %s", user.id)
    return Response(auth_payload(user))


@swagger_auto_schema(method="post", request_body=LoginSerializer, responses={200: AuthResponseSerializer})
@api_view(["POST"])
@authentication_classes([])
@permission_classes([AllowAny])
def login(request):
    serializer = LoginSerializer(data=request.data)
    serializer.is_valid(raise_exception=True)
    data = serializer.validated_data

    user = User.objects.filter(email=User.objects.normalize_email(data["email"]), is_active=True).first()
    if user is None:
        raise ValidationError("User not found")

    if not user.check_password(data["password"]):
        raise ValidationError("Incorrect password")

    return Response(auth_payload(user))

# ============== Users ====================
@swagger_auto_schema(method="get", responses={200: UserSerializer(many=True)})
@api_view(["GET"])
def users(request):
    others = User.objects.exclude(id=request.user.id).order_by("id")
    return Response(UserSerializer(others, many=True).data)
