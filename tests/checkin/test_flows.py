"""End-to-end tests for the registration and verification flows."""

from __future__ import annotations

import numpy as np
import pytest

from checkin import monitoring
from checkin.errors import CameraError, CameraErrorCode, LocationError, LocationErrorCode, MatchError
from checkin.flows import FlowStatus, RegistrationFlow, VerificationFlow, outcome_for_error
from checkin.geolocation import FixedGeolocation
from checkin.pipeline import MatchResult

from fakes import SCHOOL, FakeBackend, FakePlatform, face, make_descriptor, point_north_of

REFERENCE = make_descriptor(11)
SAME_PERSON = REFERENCE + make_descriptor(12, scale=0.001)
IMPOSTOR = make_descriptor(13, scale=0.2)


class CountingGeolocation:
    def __init__(self, position=SCHOOL, error=None):
        self.position = position
        self.error = error
        self.calls = 0

    def current_position(self):
        self.calls += 1
        if self.error is not None:
            raise self.error
        return self.position


@pytest.fixture
def registered_store(memory_store):
    memory_store.add_profile(1, REFERENCE)
    return memory_store


class TestRegistrationFlow:
    def test_registers_reference_descriptor(self, memory_store, make_session):
        memory_store.add_profile(1)
        session = make_session(FakePlatform(), FakeBackend([face(REFERENCE)]))

        outcome = RegistrationFlow(memory_store).run(1, session)

        assert outcome.status is FlowStatus.REGISTERED
        assert outcome.succeeded
        np.testing.assert_allclose(memory_store.profiles[1].reference_descriptor, REFERENCE)

    def test_reregistration_replaces_descriptor(self, registered_store, make_session):
        replacement = make_descriptor(21)
        session = make_session(FakePlatform(), FakeBackend([face(replacement)]))
        RegistrationFlow(registered_store).run(1, session)
        np.testing.assert_allclose(registered_store.profiles[1].reference_descriptor, replacement)

    def test_no_face_is_retryable(self, memory_store, make_session):
        memory_store.add_profile(1)
        session = make_session(FakePlatform(), FakeBackend([[]]))

        outcome = RegistrationFlow(memory_store).run(1, session)

        assert outcome.status is FlowStatus.NO_FACE_DETECTED
        assert outcome.retryable
        assert memory_store.profiles[1].reference_descriptor is None

    def test_unknown_profile(self, memory_store, make_session):
        session = make_session(FakePlatform(), FakeBackend([face(REFERENCE)]))
        outcome = RegistrationFlow(memory_store).run(404, session)
        assert outcome.status is FlowStatus.PROFILE_NOT_FOUND
        assert not outcome.retryable

    def test_preflight_failure_carries_hint(self, memory_store, make_session):
        memory_store.add_profile(1)
        session = make_session(FakePlatform(secure=False), FakeBackend())

        outcome = RegistrationFlow(memory_store).run(1, session)

        assert outcome.status is FlowStatus.PREFLIGHT_FAILED
        assert outcome.detail == "insecure_context"
        assert "HTTPS" in outcome.hint
        assert not outcome.retryable

    def test_model_load_failure(self, memory_store, make_session):
        memory_store.add_profile(1)
        backend = FakeBackend(failing_sources=("local", "remote"))
        outcome = RegistrationFlow(memory_store).run(1, make_session(FakePlatform(), backend))
        assert outcome.status is FlowStatus.MODEL_LOAD_FAILED
        assert outcome.retryable

    def test_camera_failure(self, memory_store, make_session):
        memory_store.add_profile(1)
        busy = CameraError(CameraErrorCode.IN_USE)
        session = make_session(FakePlatform(errors=[None, busy]), FakeBackend())
        outcome = RegistrationFlow(memory_store).run(1, session)
        assert outcome.status is FlowStatus.CAMERA_FAILED
        assert outcome.detail == "camera_in_use"

    def test_cancelled_session(self, memory_store, make_session):
        memory_store.add_profile(1)
        session = make_session(FakePlatform(), FakeBackend([face(REFERENCE)]))
        session.cancel()
        outcome = RegistrationFlow(memory_store).run(1, session)
        assert outcome.status is FlowStatus.CANCELLED
        assert memory_store.profiles[1].reference_descriptor is None


class TestVerificationFlow:
    def test_check_in_inside_geofence(self, registered_store, make_session):
        geolocation = CountingGeolocation(point_north_of(SCHOOL, 40.0))
        session = make_session(FakePlatform(), FakeBackend([face(SAME_PERSON)]))

        outcome = VerificationFlow(registered_store, geolocation, location_timeout=1).run(1, session)

        assert outcome.status is FlowStatus.CHECKED_IN
        assert outcome.succeeded and not outcome.is_warning
        assert outcome.match.matched
        assert outcome.match.confidence > 0.9
        assert outcome.distance_meters == pytest.approx(40.0, abs=0.01)
        assert registered_store.events[0].is_valid

        payload = outcome.as_dict()
        assert payload["status"] == "checked_in"
        assert payload["attendance"]["is_valid"] is True
        assert "confidence" in payload

        assert monitoring.get_health_snapshot()["outcomes"] == {"verification:checked_in": 1}

    def test_check_in_outside_geofence_is_recorded_with_warning(self, registered_store, make_session):
        geolocation = CountingGeolocation(point_north_of(SCHOOL, 900.0))
        session = make_session(FakePlatform(), FakeBackend([face(SAME_PERSON)]))

        outcome = VerificationFlow(registered_store, geolocation, location_timeout=1).run(1, session)

        assert outcome.status is FlowStatus.CHECKED_IN_OUT_OF_RANGE
        assert outcome.succeeded
        assert outcome.is_warning
        assert outcome.attendance.is_valid is False
        assert len(registered_store.events) == 1

    def test_second_check_in_is_already_checked_in(self, registered_store, make_session):
        flow = VerificationFlow(registered_store, CountingGeolocation(), location_timeout=1)
        first = flow.run(1, make_session(FakePlatform(), FakeBackend([face(SAME_PERSON)])))
        second = flow.run(1, make_session(FakePlatform(), FakeBackend([face(SAME_PERSON)])))

        assert first.status is FlowStatus.CHECKED_IN
        assert second.status is FlowStatus.ALREADY_CHECKED_IN
        assert not second.retryable
        assert len(registered_store.events) == 1

    def test_impostor_is_rejected_without_locating(self, registered_store, make_session):
        geolocation = CountingGeolocation()
        session = make_session(FakePlatform(), FakeBackend([face(IMPOSTOR)]))

        outcome = VerificationFlow(registered_store, geolocation, location_timeout=1).run(1, session)

        assert outcome.status is FlowStatus.FACE_REJECTED
        assert outcome.retryable
        assert not outcome.match.matched
        assert "exceeds threshold" in outcome.detail
        assert geolocation.calls == 0
        assert registered_store.events == []

    def test_unregistered_profile(self, memory_store, make_session):
        memory_store.add_profile(1)
        geolocation = CountingGeolocation()
        session = make_session(FakePlatform(), FakeBackend([face(SAME_PERSON)]))

        outcome = VerificationFlow(memory_store, geolocation, location_timeout=1).run(1, session)

        assert outcome.status is FlowStatus.NOT_REGISTERED
        assert geolocation.calls == 0

    def test_missing_school_location(self, registered_store, make_session):
        registered_store.school = None
        geolocation = CountingGeolocation()
        session = make_session(FakePlatform(), FakeBackend([face(SAME_PERSON)]))

        outcome = VerificationFlow(registered_store, geolocation, location_timeout=1).run(1, session)

        assert outcome.status is FlowStatus.CONFIGURATION_ERROR
        assert not outcome.retryable
        assert registered_store.events == []

    def test_location_denied(self, registered_store, make_session):
        geolocation = CountingGeolocation(error=LocationError(LocationErrorCode.PERMISSION_DENIED))
        session = make_session(FakePlatform(), FakeBackend([face(SAME_PERSON)]))

        outcome = VerificationFlow(registered_store, geolocation, location_timeout=1).run(1, session)

        assert outcome.status is FlowStatus.LOCATION_UNAVAILABLE
        assert outcome.detail == "permission_denied"
        assert outcome.retryable
        assert registered_store.events == []

    def test_persistence_failure(self, registered_store, make_session):
        registered_store.fail_inserts = True
        session = make_session(FakePlatform(), FakeBackend([face(SAME_PERSON)]))

        outcome = VerificationFlow(registered_store, CountingGeolocation(), location_timeout=1).run(1, session)

        assert outcome.status is FlowStatus.PERSISTENCE_FAILED
        assert outcome.retryable

    def test_no_face_leaves_session_ready_for_retry(self, registered_store, make_session):
        session = make_session(FakePlatform(), FakeBackend([[], face(SAME_PERSON)]))
        flow = VerificationFlow(registered_store, CountingGeolocation(), location_timeout=1)

        first = flow.run(1, session)
        second = flow.run(1, session)

        assert first.status is FlowStatus.NO_FACE_DETECTED
        assert second.status is FlowStatus.CHECKED_IN


def test_match_error_maps_to_a_retryable_rejection():
    match = MatchResult(matched=False, confidence=0.2, distance_score=0.8)

    outcome = outcome_for_error(MatchError(0.8, 0.5, match=match))

    assert outcome.status is FlowStatus.FACE_REJECTED
    assert outcome.retryable
    assert outcome.match is match
    assert outcome.as_dict()["distance_score"] == 0.8
    assert outcome.detail == "distance 0.8000 exceeds threshold 0.5000"
