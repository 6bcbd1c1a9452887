"""
Main URL configuration for the school attendance project.

The REST API lives under ``api/v1/``: JWT auth endpoints, the roster
(``users`` app) and check-in, attendance and geofence endpoints
(``checkin`` app).
"""

from django.contrib import admin
from django.urls import include, path

from rest_framework_simplejwt.views import TokenObtainPairView, TokenRefreshView, TokenVerifyView

from checkin import views as checkin_views

urlpatterns = [
    # Auth endpoints
    path("api/v1/auth/login/", TokenObtainPairView.as_view(), name="token_obtain_pair"),
    path("api/v1/auth/refresh/", TokenRefreshView.as_view(), name="token_refresh"),
    path("api/v1/auth/verify/", TokenVerifyView.as_view(), name="token_verify"),
    # API V1
    path("api/v1/", include("users.api.urls")),
    path("api/v1/", include("checkin.api.urls")),
    path("metrics/", checkin_views.monitoring_metrics, name="monitoring-metrics"),
    # Django Admin
    path("django-admin/", admin.site.urls),
]
