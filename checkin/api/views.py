import logging

from django.db.models import Q
from django.utils import timezone
from django.utils.dateparse import parse_date

import numpy as np
from django_ratelimit.core import is_ratelimited
from rest_framework import permissions, status, viewsets
from rest_framework.decorators import action
from rest_framework.exceptions import ValidationError
from rest_framework.response import Response
from rest_framework.views import APIView

from checkin import monitoring
from checkin.api.serializers import (
    AttendanceEventSerializer,
    RegisterFaceSerializer,
    SchoolLocationSerializer,
    StatsSerializer,
    VerifyAttendanceSerializer,
)
from checkin.camera import StillFramePlatform
from checkin.capture import CaptureSession
from checkin.config import get_rate_limit, get_trusted_insecure_hosts
from checkin.errors import LocationErrorCode
from checkin.flows import FlowOutcome, FlowStatus, RegistrationFlow, VerificationFlow
from checkin.geo import Coordinates
from checkin.geolocation import ReportedGeolocation
from checkin.models import AttendanceEvent, SchoolLocation
from checkin.pipeline import get_face_matcher
from checkin.store import DjangoRecordStore
from users.models import ClassGroup, Profile, Role
from users.permissions import HasProfile, IsAdminRole, IsTeacherOrAdmin, get_profile, user_role

logger = logging.getLogger(__name__)

OUTCOME_HTTP_STATUS = {
    FlowStatus.REGISTERED: status.HTTP_201_CREATED,
    FlowStatus.CHECKED_IN: status.HTTP_201_CREATED,
    FlowStatus.CHECKED_IN_OUT_OF_RANGE: status.HTTP_201_CREATED,
    FlowStatus.ALREADY_CHECKED_IN: status.HTTP_409_CONFLICT,
    FlowStatus.NO_FACE_DETECTED: status.HTTP_422_UNPROCESSABLE_ENTITY,
    FlowStatus.FACE_REJECTED: status.HTTP_403_FORBIDDEN,
    FlowStatus.NOT_REGISTERED: status.HTTP_409_CONFLICT,
    FlowStatus.PROFILE_NOT_FOUND: status.HTTP_404_NOT_FOUND,
    FlowStatus.LOCATION_UNAVAILABLE: status.HTTP_400_BAD_REQUEST,
    FlowStatus.CONFIGURATION_ERROR: status.HTTP_503_SERVICE_UNAVAILABLE,
    FlowStatus.PREFLIGHT_FAILED: status.HTTP_400_BAD_REQUEST,
    FlowStatus.MODEL_LOAD_FAILED: status.HTTP_503_SERVICE_UNAVAILABLE,
    FlowStatus.CAMERA_FAILED: status.HTTP_400_BAD_REQUEST,
    FlowStatus.PERSISTENCE_FAILED: status.HTTP_503_SERVICE_UNAVAILABLE,
    FlowStatus.CANCELLED: status.HTTP_409_CONFLICT,
}


def _is_secure_origin(request) -> bool:
    """Browsers only expose the camera on HTTPS or trusted local hosts."""

    if request.is_secure():
        return True
    host = request.get_host().rsplit(":", 1)[0]
    return host in get_trusted_insecure_hosts()


def _rate_limited(request, group: str) -> bool:
    rate = get_rate_limit()
    if not rate:
        return False
    limited = is_ratelimited(
        request=request,
        group=group,
        key="user_or_ip",
        rate=rate,
        method="POST",
        increment=True,
    )
    if limited:
        logger.warning(
            "Check-in rate limit triggered for %s",
            request.user,
            extra={"event": "rate_limit", "group": group},
        )
    return limited


def _too_many_requests() -> Response:
    return Response(
        {"detail": "Too many attempts. Please wait a moment."},
        status=status.HTTP_429_TOO_MANY_REQUESTS,
    )


def _build_session(request, frame: np.ndarray) -> CaptureSession:
    platform = StillFramePlatform(frame, secure=_is_secure_origin(request))
    return CaptureSession(platform, get_face_matcher())


def _outcome_response(outcome: FlowOutcome) -> Response:
    return Response(outcome.as_dict(), status=OUTCOME_HTTP_STATUS[outcome.status])


class RegisterFaceView(APIView):
    """Store the face in an uploaded frame as the profile's reference."""

    permission_classes = [permissions.IsAuthenticated, HasProfile]

    def post(self, request):
        if _rate_limited(request, "checkin.register_face"):
            return _too_many_requests()

        serializer = RegisterFaceSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        profile = get_profile(request.user)
        target_id = serializer.validated_data.get("profile_id", profile.pk)
        if target_id != profile.pk and user_role(request.user) != Role.ADMIN:
            return Response(
                {"detail": "Only administrators can register another profile's face."},
                status=status.HTTP_403_FORBIDDEN,
            )

        with _build_session(request, serializer.validated_data["image"]) as session:
            outcome = RegistrationFlow(DjangoRecordStore()).run(target_id, session)
        return _outcome_response(outcome)


class VerifyAttendanceView(APIView):
    """Match an uploaded frame against the caller's reference and check in."""

    permission_classes = [permissions.IsAuthenticated, HasProfile]

    def post(self, request):
        if _rate_limited(request, "checkin.verify"):
            return _too_many_requests()

        serializer = VerifyAttendanceSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        if "location_error" in data:
            geolocation = ReportedGeolocation(error_code=LocationErrorCode(data["location_error"]))
        elif "latitude" in data:
            geolocation = ReportedGeolocation(
                Coordinates(data["latitude"], data["longitude"], data.get("accuracy"))
            )
        else:
            geolocation = ReportedGeolocation()

        profile = get_profile(request.user)
        with _build_session(request, data["image"]) as session:
            outcome = VerificationFlow(DjangoRecordStore(), geolocation).run(profile.pk, session)
        return _outcome_response(outcome)


class SchoolLocationView(APIView):
    """Read (any user) or configure (administrators) the school geofence."""

    def get_permissions(self):
        if self.request.method == "PUT":
            return [permissions.IsAuthenticated(), IsAdminRole()]
        return [permissions.IsAuthenticated()]

    def get(self, request):
        location = SchoolLocation.load()
        if location is None:
            payload = dict(SchoolLocation.defaults(), configured=False, updated_at=None)
            return Response(payload)
        payload = SchoolLocationSerializer(location).data
        payload["configured"] = True
        return Response(payload)

    def put(self, request):
        location = SchoolLocation.load()
        serializer = SchoolLocationSerializer(instance=location, data=request.data)
        serializer.is_valid(raise_exception=True)
        saved = serializer.save()
        logger.info(
            "School location updated by %s",
            request.user,
            extra={"event": "school_location_update", "radius_meters": saved.radius_meters},
        )
        payload = SchoolLocationSerializer(saved).data
        payload["configured"] = True
        return Response(payload)


class AttendanceViewSet(viewsets.ReadOnlyModelViewSet):
    """
    Attendance rolls. Students see their own history, teachers the classes
    they teach, administrators everything.
    """

    serializer_class = AttendanceEventSerializer
    permission_classes = [permissions.IsAuthenticated]

    def get_queryset(self):
        user = self.request.user
        queryset = AttendanceEvent.objects.select_related("profile", "profile__class_group")

        role = user_role(user)
        if role == Role.TEACHER:
            teacher = get_profile(user)
            queryset = queryset.filter(
                Q(profile__class_group__in=teacher.teaching_classes.all()) | Q(profile=teacher)
            )
        elif role != Role.ADMIN:
            profile = get_profile(user)
            if profile is None:
                return queryset.none()
            queryset = queryset.filter(profile=profile)

        params = self.request.query_params
        for name, lookup in (
            ("date", "attendance_date"),
            ("start_date", "attendance_date__gte"),
            ("end_date", "attendance_date__lte"),
        ):
            raw = params.get(name)
            if not raw:
                continue
            parsed = parse_date(raw)
            if parsed is None:
                raise ValidationError({name: "Use the YYYY-MM-DD format."})
            queryset = queryset.filter(**{lookup: parsed})

        class_id = params.get("class_id")
        if class_id:
            try:
                queryset = queryset.filter(profile__class_group_id=int(class_id))
            except ValueError:
                raise ValidationError({"class_id": "Must be an integer class id."})
        is_valid = params.get("is_valid")
        if is_valid in ("true", "false"):
            queryset = queryset.filter(is_valid=is_valid == "true")
        return queryset.order_by("-attendance_date", "-attendance_time")

    @action(
        detail=False,
        methods=["get"],
        permission_classes=[permissions.IsAuthenticated, IsTeacherOrAdmin],
    )
    def stats(self, request):
        """Dashboard counters for today."""

        today = timezone.localdate()
        todays = AttendanceEvent.objects.filter(attendance_date=today)
        data = {
            "total_students": Profile.objects.filter(role=Role.STUDENT).count(),
            "total_teachers": Profile.objects.filter(role=Role.TEACHER).count(),
            "total_classes": ClassGroup.objects.count(),
            "present_today": todays.values("profile").distinct().count(),
            "out_of_range_today": todays.filter(is_valid=False).count(),
        }
        serializer = StatsSerializer(data)
        return Response(serializer.data)


class HealthView(APIView):
    """Pipeline health snapshot for administrators."""

    permission_classes = [permissions.IsAuthenticated, IsAdminRole]

    def get(self, request):
        return Response(monitoring.get_health_snapshot())
