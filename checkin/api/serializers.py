import base64
import binascii

import numpy as np
from rest_framework import serializers

from checkin.camera import decode_image
from checkin.config import get_max_upload_size
from checkin.errors import LocationErrorCode
from checkin.models import RADIUS_MAX_METERS, RADIUS_MIN_METERS, AttendanceEvent, SchoolLocation


class FrameField(serializers.Field):
    """Accept an uploaded image file or a base64 string (data URLs included).

    The payload is decoded here, so a validated value is always a BGR frame.
    """

    default_error_messages = {
        "invalid": "Image must be an uploaded file or base64-encoded data.",
        "too_large": "Image exceeds the maximum allowed size of {max_size} bytes.",
        "empty": "Image payload is empty.",
        "undecodable": "Image could not be decoded. Send a JPEG or PNG frame.",
    }

    def to_internal_value(self, data) -> np.ndarray:
        max_size = get_max_upload_size()
        if hasattr(data, "read"):
            if getattr(data, "size", 0) > max_size:
                self.fail("too_large", max_size=max_size)
            raw = data.read()
        elif isinstance(data, str):
            encoded = data.strip()
            if encoded.startswith("data:"):
                _, _, encoded = encoded.partition(",")
            # base64 inflates payloads by roughly a third.
            if len(encoded) > max_size * 1.4:
                self.fail("too_large", max_size=max_size)
            try:
                raw = base64.b64decode(encoded, validate=True)
            except (binascii.Error, ValueError):
                self.fail("invalid")
        else:
            self.fail("invalid")

        if not raw:
            self.fail("empty")
        if len(raw) > max_size:
            self.fail("too_large", max_size=max_size)

        frame = decode_image(raw)
        if frame is None:
            self.fail("undecodable")
        return frame

    def to_representation(self, value):  # pragma: no cover
        return None


class RegisterFaceSerializer(serializers.Serializer):
    image = FrameField(write_only=True)
    profile_id = serializers.IntegerField(
        required=False,
        help_text="Administrators may register a face for another profile.",
    )


class VerifyAttendanceSerializer(serializers.Serializer):
    """A captured frame plus what the browser's geolocation API reported."""

    image = FrameField(write_only=True)
    latitude = serializers.FloatField(required=False, min_value=-90.0, max_value=90.0)
    longitude = serializers.FloatField(required=False, min_value=-180.0, max_value=180.0)
    accuracy = serializers.FloatField(required=False, min_value=0.0)
    location_error = serializers.ChoiceField(
        choices=[code.value for code in LocationErrorCode],
        required=False,
    )

    def validate(self, attrs):
        has_latitude = "latitude" in attrs
        has_longitude = "longitude" in attrs
        if has_latitude != has_longitude:
            raise serializers.ValidationError("Latitude and longitude must be sent together.")
        return attrs


class SchoolLocationSerializer(serializers.ModelSerializer):
    radius_meters = serializers.IntegerField(
        min_value=RADIUS_MIN_METERS, max_value=RADIUS_MAX_METERS
    )

    class Meta:
        model = SchoolLocation
        fields = ["name", "latitude", "longitude", "radius_meters", "updated_at"]
        read_only_fields = ["updated_at"]


class AttendanceEventSerializer(serializers.ModelSerializer):
    """Serializer for attendance rolls."""

    profile_id = serializers.IntegerField(source="profile.id", read_only=True)
    full_name = serializers.CharField(source="profile.full_name", read_only=True)
    registration_number = serializers.CharField(
        source="profile.registration_number", read_only=True
    )
    class_name = serializers.CharField(
        source="profile.class_group.name", read_only=True, default=None
    )

    class Meta:
        model = AttendanceEvent
        fields = [
            "id",
            "profile_id",
            "full_name",
            "registration_number",
            "class_name",
            "latitude",
            "longitude",
            "is_valid",
            "distance_meters",
            "attendance_date",
            "attendance_time",
        ]
        read_only_fields = fields


class StatsSerializer(serializers.Serializer):
    """Serializer for dashboard statistics."""

    total_students = serializers.IntegerField()
    total_teachers = serializers.IntegerField()
    total_classes = serializers.IntegerField()
    present_today = serializers.IntegerField()
    out_of_range_today = serializers.IntegerField()
