from django.urls import include, path

from rest_framework.routers import SimpleRouter

from .views import (
    AttendanceViewSet,
    HealthView,
    RegisterFaceView,
    SchoolLocationView,
    VerifyAttendanceView,
)

router = SimpleRouter()
router.register(r"attendance", AttendanceViewSet, basename="attendance")

urlpatterns = [
    path("checkin/register-face/", RegisterFaceView.as_view(), name="register-face"),
    path("checkin/verify/", VerifyAttendanceView.as_view(), name="verify-attendance"),
    path("school-location/", SchoolLocationView.as_view(), name="school-location"),
    path("health/", HealthView.as_view(), name="health"),
    path("", include(router.urls)),
]
