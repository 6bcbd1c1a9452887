"""Create the school geofence and daily attendance tables."""

import django.core.validators
import django.db.models.deletion
import django.utils.timezone
from django.db import migrations, models


class Migration(migrations.Migration):
    initial = True

    dependencies = [
        ("users", "0001_initial"),
    ]

    operations = [
        migrations.CreateModel(
            name="SchoolLocation",
            fields=[
                (
                    "id",
                    models.BigAutoField(
                        auto_created=True, primary_key=True, serialize=False, verbose_name="ID"
                    ),
                ),
                (
                    "singleton_key",
                    models.PositiveSmallIntegerField(default=1, editable=False, unique=True),
                ),
                ("name", models.CharField(default="School", max_length=200)),
                (
                    "latitude",
                    models.FloatField(
                        validators=[
                            django.core.validators.MinValueValidator(-90.0),
                            django.core.validators.MaxValueValidator(90.0),
                        ]
                    ),
                ),
                (
                    "longitude",
                    models.FloatField(
                        validators=[
                            django.core.validators.MinValueValidator(-180.0),
                            django.core.validators.MaxValueValidator(180.0),
                        ]
                    ),
                ),
                (
                    "radius_meters",
                    models.PositiveIntegerField(
                        default=200,
                        help_text="Check-ins within this distance of the centre are valid.",
                        validators=[
                            django.core.validators.MinValueValidator(50),
                            django.core.validators.MaxValueValidator(1000),
                        ],
                    ),
                ),
                ("updated_at", models.DateTimeField(auto_now=True)),
            ],
            options={
                "verbose_name": "School Location",
                "verbose_name_plural": "School Location",
            },
        ),
        migrations.CreateModel(
            name="AttendanceEvent",
            fields=[
                (
                    "id",
                    models.BigAutoField(
                        auto_created=True, primary_key=True, serialize=False, verbose_name="ID"
                    ),
                ),
                ("latitude", models.FloatField()),
                ("longitude", models.FloatField()),
                (
                    "is_valid",
                    models.BooleanField(
                        help_text="Whether the check-in happened inside the school geofence."
                    ),
                ),
                (
                    "distance_meters",
                    models.FloatField(help_text="Distance from the school centre when checking in."),
                ),
                (
                    "attendance_date",
                    models.DateField(db_index=True, default=django.utils.timezone.localdate),
                ),
                ("attendance_time", models.DateTimeField(auto_now_add=True)),
                (
                    "profile",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="attendance_events",
                        to="users.profile",
                    ),
                ),
            ],
            options={
                "verbose_name": "Attendance",
                "verbose_name_plural": "Attendance",
                "ordering": ["-attendance_date", "-attendance_time"],
                "constraints": [
                    models.UniqueConstraint(
                        fields=("profile", "attendance_date"),
                        name="checkin_one_attendance_per_day",
                    )
                ],
            },
        ),
    ]
