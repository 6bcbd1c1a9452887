from django.urls import include, path

from rest_framework.routers import DefaultRouter

from .views import ClassGroupViewSet, ProfileViewSet, SignUpView

router = DefaultRouter()
router.register(r"profiles", ProfileViewSet, basename="profile")
router.register(r"classes", ClassGroupViewSet, basename="class")

urlpatterns = [
    path("auth/signup/", SignUpView.as_view(), name="signup"),
    path("", include(router.urls)),
]
