"""Create the roster tables: classes and profiles."""

import django.db.models.deletion
from django.conf import settings
from django.db import migrations, models

import users.validators


class Migration(migrations.Migration):
    initial = True

    dependencies = [
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name="ClassGroup",
            fields=[
                (
                    "id",
                    models.BigAutoField(
                        auto_created=True, primary_key=True, serialize=False, verbose_name="ID"
                    ),
                ),
                ("name", models.CharField(max_length=100, unique=True)),
                ("description", models.TextField(blank=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
            ],
            options={
                "verbose_name": "Class",
                "verbose_name_plural": "Classes",
                "ordering": ["name"],
            },
        ),
        migrations.CreateModel(
            name="Profile",
            fields=[
                (
                    "id",
                    models.BigAutoField(
                        auto_created=True, primary_key=True, serialize=False, verbose_name="ID"
                    ),
                ),
                (
                    "full_name",
                    models.CharField(
                        max_length=100, validators=[users.validators.validate_full_name]
                    ),
                ),
                (
                    "registration_number",
                    models.CharField(
                        max_length=20,
                        unique=True,
                        validators=[users.validators.validate_registration_number],
                    ),
                ),
                (
                    "role",
                    models.CharField(
                        choices=[("student", "Student"), ("teacher", "Teacher"), ("admin", "Admin")],
                        default="student",
                        max_length=16,
                    ),
                ),
                (
                    "face_descriptor",
                    models.BinaryField(
                        blank=True,
                        editable=False,
                        help_text="Fernet-encrypted reference face descriptor.",
                        null=True,
                    ),
                ),
                ("face_registered_at", models.DateTimeField(blank=True, null=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                (
                    "class_group",
                    models.ForeignKey(
                        blank=True,
                        help_text="Class the student is enrolled in.",
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="students",
                        to="users.classgroup",
                    ),
                ),
                (
                    "teaching_classes",
                    models.ManyToManyField(
                        blank=True,
                        help_text="Classes a teacher can see attendance for.",
                        related_name="teachers",
                        to="users.classgroup",
                    ),
                ),
                (
                    "user",
                    models.OneToOneField(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="profile",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
            options={
                "ordering": ["full_name"],
                "indexes": [
                    models.Index(
                        fields=["role", "class_group"], name="users_profile_role_class_idx"
                    )
                ],
            },
        ),
    ]
