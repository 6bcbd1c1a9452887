from django.contrib.auth import get_user_model
from django.contrib.auth.password_validation import validate_password as run_password_validators
from django.db import transaction

from rest_framework import serializers

from users.models import ClassGroup, Profile, Role

User = get_user_model()


class ClassGroupSerializer(serializers.ModelSerializer):
    """Serializer for school classes."""

    student_count = serializers.SerializerMethodField()

    class Meta:
        model = ClassGroup
        fields = ["id", "name", "description", "student_count", "created_at"]
        read_only_fields = ["created_at"]

    def get_student_count(self, obj):
        annotated = getattr(obj, "num_students", None)
        if annotated is not None:
            return annotated
        return obj.students.count()


class ProfileSerializer(serializers.ModelSerializer):
    """Serializer for roster profiles; the descriptor itself is never exposed."""

    username = serializers.CharField(source="user.username", read_only=True)
    email = serializers.EmailField(source="user.email", read_only=True)
    face_registered = serializers.BooleanField(source="has_face_descriptor", read_only=True)
    class_group = serializers.PrimaryKeyRelatedField(
        queryset=ClassGroup.objects.all(), allow_null=True, required=False
    )
    teaching_classes = serializers.PrimaryKeyRelatedField(
        queryset=ClassGroup.objects.all(), many=True, required=False
    )

    class Meta:
        model = Profile
        fields = [
            "id",
            "username",
            "email",
            "full_name",
            "registration_number",
            "role",
            "class_group",
            "teaching_classes",
            "face_registered",
            "face_registered_at",
        ]
        read_only_fields = ["face_registered_at"]

    def validate(self, attrs):
        role = attrs.get("role", getattr(self.instance, "role", Role.STUDENT))
        if attrs.get("teaching_classes") and role != Role.TEACHER:
            raise serializers.ValidationError(
                {"teaching_classes": "Only teachers can be assigned classes to teach."}
            )
        return attrs


class CreateProfileSerializer(ProfileSerializer):
    """Create the auth user and its profile in one request."""

    username = serializers.CharField(source="user.username", max_length=150)
    email = serializers.EmailField(source="user.email", required=False, allow_blank=True)
    password = serializers.CharField(write_only=True, style={"input_type": "password"})

    class Meta(ProfileSerializer.Meta):
        fields = ProfileSerializer.Meta.fields + ["password"]

    def validate_username(self, value):
        if User.objects.filter(username=value).exists():
            raise serializers.ValidationError("A user with that username already exists.")
        return value

    def validate_password(self, value):
        run_password_validators(value)
        return value

    def create(self, validated_data):
        teaching_classes = validated_data.pop("teaching_classes", [])
        user_data = validated_data.pop("user")
        with transaction.atomic():
            user = User.objects.create_user(
                username=user_data["username"],
                email=user_data.get("email", ""),
                password=validated_data.pop("password"),
                is_staff=validated_data.get("role") == Role.ADMIN,
            )
            profile = Profile.objects.create(user=user, **validated_data)
            if teaching_classes:
                profile.teaching_classes.set(teaching_classes)
        return profile


class SignUpSerializer(CreateProfileSerializer):
    """Student self sign-up. The e-mail doubles as the username when none is given."""

    username = serializers.CharField(source="user.username", max_length=150, required=False)
    email = serializers.EmailField(source="user.email")

    class Meta(CreateProfileSerializer.Meta):
        fields = ["username", "email", "password", "full_name", "registration_number", "class_group"]

    def validate_email(self, value):
        if User.objects.filter(email__iexact=value).exists():
            raise serializers.ValidationError("An account with this e-mail already exists.")
        return value

    def validate(self, attrs):
        attrs = super().validate(attrs)
        user_data = attrs["user"]
        if "username" not in user_data:
            user_data["username"] = self.validate_username(user_data["email"])
        attrs["role"] = Role.STUDENT
        return attrs


class TeachingClassesSerializer(serializers.Serializer):
    """Replace the set of classes a teacher is assigned to."""

    teaching_classes = serializers.PrimaryKeyRelatedField(
        queryset=ClassGroup.objects.all(), many=True
    )
