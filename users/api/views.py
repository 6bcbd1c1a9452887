import logging

from django.conf import settings
from django.db.models import Count

from django_ratelimit.core import is_ratelimited
from rest_framework import permissions, status, viewsets
from rest_framework.decorators import action
from rest_framework.exceptions import ValidationError
from rest_framework.response import Response
from rest_framework.views import APIView
from rest_framework_simplejwt.tokens import RefreshToken

from users.api.serializers import (
    ClassGroupSerializer,
    CreateProfileSerializer,
    ProfileSerializer,
    SignUpSerializer,
    TeachingClassesSerializer,
)
from users.models import ClassGroup, Profile, Role
from users.permissions import HasProfile, IsAdminRole, IsTeacherOrAdmin, get_profile, user_role

logger = logging.getLogger(__name__)


class ProfileViewSet(viewsets.ModelViewSet):
    """
    Roster management. Administrators create and edit profiles; everyone
    with a profile can read their own through ``me``.
    """

    queryset = (
        Profile.objects.select_related("user", "class_group")
        .prefetch_related("teaching_classes")
        .order_by("full_name")
    )
    serializer_class = ProfileSerializer
    permission_classes = [permissions.IsAuthenticated, IsAdminRole]

    def get_permissions(self):
        if self.action == "me":
            return [permissions.IsAuthenticated(), HasProfile()]
        if self.action in ("list", "retrieve"):
            return [permissions.IsAuthenticated(), IsTeacherOrAdmin()]
        return super().get_permissions()

    def get_serializer_class(self):
        if self.action == "create":
            return CreateProfileSerializer
        return ProfileSerializer

    def get_queryset(self):
        queryset = super().get_queryset()
        if user_role(self.request.user) == Role.TEACHER:
            profile = get_profile(self.request.user)
            queryset = queryset.filter(class_group__in=profile.teaching_classes.all())

        role = self.request.query_params.get("role")
        class_id = self.request.query_params.get("class_id")
        if role:
            queryset = queryset.filter(role=role)
        if class_id:
            try:
                queryset = queryset.filter(class_group_id=int(class_id))
            except ValueError:
                raise ValidationError({"class_id": "Must be an integer class id."})
        return queryset

    def create(self, request, *args, **kwargs):
        serializer = self.get_serializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        profile = serializer.save()
        return Response(ProfileSerializer(profile).data, status=status.HTTP_201_CREATED)

    def perform_destroy(self, instance):
        # Deleting the auth user cascades to the profile and its attendance.
        instance.user.delete()

    @action(detail=False, methods=["get"])
    def me(self, request):
        serializer = ProfileSerializer(get_profile(request.user))
        return Response(serializer.data)

    @action(detail=True, methods=["put"], url_path="teaching-classes")
    def teaching_classes(self, request, pk=None):
        """Replace the classes assigned to a teacher."""

        profile = self.get_object()
        if profile.role != Role.TEACHER:
            return Response(
                {"detail": "Only teachers can be assigned classes to teach."},
                status=status.HTTP_400_BAD_REQUEST,
            )
        serializer = TeachingClassesSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        profile.teaching_classes.set(serializer.validated_data["teaching_classes"])
        return Response(ProfileSerializer(profile).data)


class ClassGroupViewSet(viewsets.ModelViewSet):
    """
    School classes. Teachers and administrators can list them; only
    administrators can change them.
    """

    serializer_class = ClassGroupSerializer
    permission_classes = [permissions.IsAuthenticated, IsAdminRole]

    def get_permissions(self):
        if self.action in ("list", "retrieve"):
            return [permissions.IsAuthenticated(), IsTeacherOrAdmin()]
        return super().get_permissions()

    def get_queryset(self):
        queryset = ClassGroup.objects.annotate(num_students=Count("students")).order_by("name")
        if user_role(self.request.user) == Role.TEACHER:
            queryset = queryset.filter(pk__in=get_profile(self.request.user).teaching_classes.all())
        return queryset


class SignUpView(APIView):
    """
    Students create their own account; every other role is created by an
    administrator through ``profiles/``. The response carries a token pair so
    the client can go straight on to face registration.
    """

    permission_classes = [permissions.AllowAny]

    def post(self, request):
        rate = getattr(settings, "SIGNUP_RATE_LIMIT", "5/h")
        if rate and is_ratelimited(
            request=request,
            group="users.signup",
            key="ip",
            rate=rate,
            method="POST",
            increment=True,
        ):
            logger.warning("Sign-up rate limit triggered", extra={"event": "rate_limit", "group": "users.signup"})
            return Response(
                {"detail": "Too many sign-up attempts. Please wait a moment."},
                status=status.HTTP_429_TOO_MANY_REQUESTS,
            )

        serializer = SignUpSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        profile = serializer.save()
        logger.info(
            "Student %s signed up",
            profile.registration_number,
            extra={"event": "signup", "profile_id": profile.pk},
        )

        refresh = RefreshToken.for_user(profile.user)
        payload = ProfileSerializer(profile).data
        payload["tokens"] = {"refresh": str(refresh), "access": str(refresh.access_token)}
        return Response(payload, status=status.HTTP_201_CREATED)
