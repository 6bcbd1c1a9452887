"""API tests for roster management, classes and JWT authentication."""

from __future__ import annotations

import pytest
from django.contrib.auth import get_user_model
from django.test import override_settings
from django.urls import reverse
from rest_framework.test import APIClient

from users.models import ClassGroup, Profile, Role

pytestmark = pytest.mark.django_db

STRONG_PASSWORD = "Xq7vLm2Kp9rT"


def client_for(profile) -> APIClient:
    client = APIClient()
    client.force_authenticate(user=profile.user)
    return client


@pytest.fixture
def admin(make_profile):
    return make_profile(role=Role.ADMIN, full_name="Diego Dias")


class TestProfileCreation:
    def test_admin_creates_student(self, admin):
        group = ClassGroup.objects.create(name="2A")

        response = client_for(admin).post(
            reverse("profile-list"),
            {
                "username": "maria",
                "email": "maria@school.test",
                "password": STRONG_PASSWORD,
                "full_name": "Maria Pereira",
                "registration_number": "2024100",
                "role": "student",
                "class_group": group.pk,
            },
            format="json",
        )

        assert response.status_code == 201
        assert response.data["username"] == "maria"
        assert response.data["face_registered"] is False
        assert "password" not in response.data
        profile = Profile.objects.get(registration_number="2024100")
        assert profile.user.check_password(STRONG_PASSWORD)
        assert profile.class_group == group
        assert not profile.user.is_staff

    def test_admin_profiles_are_staff(self, admin):
        response = client_for(admin).post(
            reverse("profile-list"),
            {
                "username": "coord",
                "password": STRONG_PASSWORD,
                "full_name": "Paula Reis",
                "registration_number": "ADM001",
                "role": "admin",
            },
            format="json",
        )
        assert response.status_code == 201
        assert get_user_model().objects.get(username="coord").is_staff

    def test_teacher_with_classes(self, admin):
        group = ClassGroup.objects.create(name="3C")
        response = client_for(admin).post(
            reverse("profile-list"),
            {
                "username": "prof",
                "password": STRONG_PASSWORD,
                "full_name": "Rita Lopes",
                "registration_number": "T0001",
                "role": "teacher",
                "teaching_classes": [group.pk],
            },
            format="json",
        )
        assert response.status_code == 201
        assert response.data["teaching_classes"] == [group.pk]

    def test_students_cannot_teach(self, admin):
        group = ClassGroup.objects.create(name="3D")
        response = client_for(admin).post(
            reverse("profile-list"),
            {
                "username": "kid",
                "password": STRONG_PASSWORD,
                "full_name": "Caio Nunes",
                "registration_number": "S0001",
                "role": "student",
                "teaching_classes": [group.pk],
            },
            format="json",
        )
        assert response.status_code == 400
        assert "teaching_classes" in response.data

    @pytest.mark.parametrize(
        "field, value",
        [
            ("password", "weakpass"),
            ("full_name", "R2"),
            ("registration_number", "12-34"),
        ],
    )
    def test_invalid_input(self, admin, field, value):
        payload = {
            "username": "newbie",
            "password": STRONG_PASSWORD,
            "full_name": "Lia Prado",
            "registration_number": "2024200",
            "role": "student",
        }
        payload[field] = value
        response = client_for(admin).post(reverse("profile-list"), payload, format="json")
        assert response.status_code == 400
        assert field in response.data
        assert not get_user_model().objects.filter(username="newbie").exists()

    def test_duplicate_username(self, admin):
        response = client_for(admin).post(
            reverse("profile-list"),
            {
                "username": admin.user.username,
                "password": STRONG_PASSWORD,
                "full_name": "Lia Prado",
                "registration_number": "2024300",
            },
            format="json",
        )
        assert response.status_code == 400
        assert "username" in response.data

    def test_students_cannot_create(self, make_profile):
        response = client_for(make_profile()).post(reverse("profile-list"), {}, format="json")
        assert response.status_code == 403


class TestProfileAccess:
    def test_me(self, make_profile):
        profile = make_profile()
        response = client_for(profile).get(reverse("profile-me"))
        assert response.status_code == 200
        assert response.data["registration_number"] == profile.registration_number

    def test_students_cannot_list(self, make_profile):
        response = client_for(make_profile()).get(reverse("profile-list"))
        assert response.status_code == 403

    def test_teacher_lists_only_their_students(self, make_profile):
        taught = ClassGroup.objects.create(name="4A")
        other = ClassGroup.objects.create(name="4B")
        mine = make_profile(class_group=taught, full_name="Alice Alves")
        make_profile(class_group=other, full_name="Bruno Braga")
        teacher = make_profile(role=Role.TEACHER, full_name="Carla Costa")
        teacher.teaching_classes.add(taught)

        response = client_for(teacher).get(reverse("profile-list"))

        assert response.status_code == 200
        assert [row["id"] for row in response.data] == [mine.pk]

    def test_admin_filters_by_role(self, admin, make_profile):
        make_profile(full_name="Alice Alves")
        make_profile(role=Role.TEACHER, full_name="Carla Costa")

        response = client_for(admin).get(reverse("profile-list"), {"role": "teacher"})

        assert [row["full_name"] for row in response.data] == ["Carla Costa"]

    def test_admin_filters_by_class(self, admin, make_profile):
        group = ClassGroup.objects.create(name="4C")
        in_class = make_profile(class_group=group, full_name="Alice Alves")
        make_profile(full_name="Bruno Braga")
        client = client_for(admin)

        response = client.get(reverse("profile-list"), {"class_id": group.pk})
        assert [row["id"] for row in response.data] == [in_class.pk]

        bad = client.get(reverse("profile-list"), {"class_id": "abc"})
        assert bad.status_code == 400
        assert "class_id" in bad.data

    def test_assign_teaching_classes(self, admin, make_profile):
        teacher = make_profile(role=Role.TEACHER, full_name="Carla Costa")
        groups = [ClassGroup.objects.create(name=name) for name in ("5A", "5B")]

        response = client_for(admin).put(
            reverse("profile-teaching-classes", args=[teacher.pk]),
            {"teaching_classes": [group.pk for group in groups]},
            format="json",
        )

        assert response.status_code == 200
        assert set(teacher.teaching_classes.values_list("pk", flat=True)) == {g.pk for g in groups}

    def test_teaching_classes_only_for_teachers(self, admin, make_profile):
        student = make_profile()
        group = ClassGroup.objects.create(name="5C")
        response = client_for(admin).put(
            reverse("profile-teaching-classes", args=[student.pk]),
            {"teaching_classes": [group.pk]},
            format="json",
        )
        assert response.status_code == 400

    def test_delete_removes_user(self, admin, make_profile):
        student = make_profile()
        user_id = student.user_id

        response = client_for(admin).delete(reverse("profile-detail", args=[student.pk]))

        assert response.status_code == 204
        assert not get_user_model().objects.filter(pk=user_id).exists()
        assert not Profile.objects.filter(pk=student.pk).exists()


class TestClassGroups:
    def test_admin_creates_and_counts_students(self, admin, make_profile):
        client = client_for(admin)
        created = client.post(reverse("class-list"), {"name": "6A"}, format="json")
        assert created.status_code == 201

        group = ClassGroup.objects.get(name="6A")
        make_profile(class_group=group)
        make_profile(class_group=group, full_name="Bruno Braga")

        listing = client.get(reverse("class-list"))
        assert listing.data[0]["student_count"] == 2

    def test_teacher_sees_taught_classes_only(self, make_profile):
        taught = ClassGroup.objects.create(name="7A")
        ClassGroup.objects.create(name="7B")
        teacher = make_profile(role=Role.TEACHER)
        teacher.teaching_classes.add(taught)

        response = client_for(teacher).get(reverse("class-list"))

        assert [row["name"] for row in response.data] == ["7A"]

    def test_teacher_cannot_create(self, make_profile):
        teacher = make_profile(role=Role.TEACHER)
        response = client_for(teacher).post(reverse("class-list"), {"name": "8A"}, format="json")
        assert response.status_code == 403


def test_jwt_login_and_authenticated_request(make_profile):
    profile = make_profile(password=STRONG_PASSWORD)
    client = APIClient()

    login = client.post(
        reverse("token_obtain_pair"),
        {"username": profile.user.username, "password": STRONG_PASSWORD},
        format="json",
    )
    assert login.status_code == 200

    client.credentials(HTTP_AUTHORIZATION=f"Bearer {login.data['access']}")
    response = client.get(reverse("profile-me"))
    assert response.status_code == 200
    assert response.data["id"] == profile.pk


class TestSignUp:
    def _payload(self, **overrides):
        payload = {
            "email": "joana@school.test",
            "password": STRONG_PASSWORD,
            "full_name": "Joana Prado",
            "registration_number": "2024500",
        }
        payload.update(overrides)
        return payload

    def test_student_signs_up_and_can_authenticate(self):
        group = ClassGroup.objects.create(name="9A")
        client = APIClient()

        response = client.post(reverse("signup"), self._payload(class_group=group.pk), format="json")

        assert response.status_code == 201
        assert response.data["role"] == "student"
        assert response.data["username"] == "joana@school.test"
        assert response.data["class_group"] == group.pk
        assert response.data["face_registered"] is False
        profile = Profile.objects.get(registration_number="2024500")
        assert not profile.user.is_staff

        client.credentials(HTTP_AUTHORIZATION=f"Bearer {response.data['tokens']['access']}")
        assert client.get(reverse("profile-me")).data["id"] == profile.pk

    def test_role_cannot_be_chosen(self):
        response = APIClient().post(reverse("signup"), self._payload(role="admin"), format="json")

        assert response.status_code == 201
        assert response.data["role"] == "student"
        assert not get_user_model().objects.get(username="joana@school.test").is_staff

    @pytest.mark.parametrize(
        "field, value",
        [
            ("password", "weakpass"),
            ("full_name", "J0"),
            ("registration_number", "12-34"),
            ("email", "not-an-email"),
        ],
    )
    def test_invalid_input(self, field, value):
        response = APIClient().post(reverse("signup"), self._payload(**{field: value}), format="json")

        assert response.status_code == 400
        assert field in response.data
        assert not Profile.objects.exists()

    def test_duplicate_email_and_registration_number(self, make_profile):
        existing = make_profile()
        response = APIClient().post(
            reverse("signup"),
            self._payload(
                email=existing.user.email.upper(),
                registration_number=existing.registration_number,
            ),
            format="json",
        )
        assert response.status_code == 400
        assert "email" in response.data
        assert "registration_number" in response.data

    @override_settings(SIGNUP_RATE_LIMIT="2/m")
    def test_rate_limited(self):
        client = APIClient()
        codes = [client.post(reverse("signup"), {}, format="json").status_code for _ in range(3)]
        assert codes == [400, 400, 429]
