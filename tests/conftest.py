import itertools

import pytest


@pytest.fixture(autouse=True)
def clear_rate_limit_cache():
    """Clear the rate-limit cache before and after each test to prevent state leakage."""

    from django.core.cache import cache

    cache.clear()
    yield
    cache.clear()


@pytest.fixture(autouse=True)
def reset_monitoring():
    from checkin import monitoring

    monitoring.reset_for_tests()
    yield


@pytest.fixture(scope="session", autouse=True)
def close_database_connections():
    """Close database connections at the end of the session.

    Prevents 'database is being accessed by other users' errors during
    teardown of PostgreSQL test databases.
    """

    yield
    from django.db import connections

    for conn in connections.all():
        conn.close()


@pytest.fixture
def make_profile(db):
    """Create a user with a roster profile; admins also get ``is_staff``."""

    from django.contrib.auth import get_user_model

    from users.models import Profile, Role

    counter = itertools.count(1)

    def _make(role=Role.STUDENT, class_group=None, full_name="Ana Souza", password="Secret123"):
        number = next(counter)
        user = get_user_model().objects.create_user(
            username=f"{role}{number}",
            email=f"{role}{number}@school.test",
            password=password,
            is_staff=role == Role.ADMIN,
        )
        return Profile.objects.create(
            user=user,
            full_name=full_name,
            registration_number=f"REG{number:04d}",
            role=role,
            class_group=class_group,
        )

    return _make
