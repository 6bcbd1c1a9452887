"""Tests for the check-in monitoring instrumentation."""

from __future__ import annotations

from django.test import SimpleTestCase, override_settings

from checkin import monitoring


class MonitoringInstrumentationTests(SimpleTestCase):
    """Ensure monitoring helpers capture health signals as expected."""

    def setUp(self) -> None:
        monitoring.reset_for_tests()
        return super().setUp()

    def test_camera_acquire_and_release_state(self) -> None:
        monitoring.record_camera_acquire(success=True, latency=0.2)
        snapshot = monitoring.get_health_snapshot()
        self.assertTrue(snapshot["camera"]["active"])
        self.assertEqual(snapshot["camera"]["last_start"]["status"], "success")
        self.assertEqual(snapshot["metrics"]["camera_acquire_success"], 1.0)

        monitoring.record_camera_release()
        self.assertFalse(monitoring.get_health_snapshot()["camera"]["active"])

    def test_failed_camera_acquire_keeps_error_code(self) -> None:
        monitoring.record_camera_acquire(success=False, latency=0.1, code="in_use")
        snapshot = monitoring.get_health_snapshot()
        self.assertFalse(snapshot["camera"]["active"])
        self.assertEqual(snapshot["camera"]["last_start"]["status"], "in_use")
        self.assertEqual(snapshot["metrics"]["camera_acquire_success"], 0.0)

    @override_settings(CHECKIN_CAMERA_START_ALERT_SECONDS=0.01)
    def test_slow_camera_start_raises_alert(self) -> None:
        monitoring.record_camera_acquire(success=True, latency=0.5)
        alert_types = {alert["type"] for alert in monitoring.get_health_snapshot()["alerts"]}
        self.assertIn("camera_start_latency", alert_types)

    @override_settings(CHECKIN_MODEL_LOAD_ALERT_SECONDS=0.01)
    def test_slow_model_load_raises_alert(self) -> None:
        monitoring.record_model_load("local", True, 0.5)
        snapshot = monitoring.get_health_snapshot()
        self.assertEqual(snapshot["model"]["last_load"]["source"], "local")
        self.assertEqual([alert["type"] for alert in snapshot["alerts"]], ["model_load_latency"])

    def test_model_load_failure_is_last_error(self) -> None:
        monitoring.record_model_load("remote", False, 1.0, error="offline")
        snapshot = monitoring.get_health_snapshot()
        self.assertEqual(snapshot["last_error"], "offline")
        self.assertEqual(snapshot["alerts"][0]["severity"], "error")

    @override_settings(CHECKIN_HEALTH_ALERT_HISTORY=2)
    def test_alert_history_is_bounded(self) -> None:
        for _ in range(5):
            monitoring.record_model_load("local", False, 0.1, error="missing")
        self.assertEqual(len(monitoring.get_health_snapshot()["alerts"]), 2)

    def test_flow_outcomes_are_counted(self) -> None:
        monitoring.record_flow_outcome("verification", "checked_in", distance=12.0)
        monitoring.record_flow_outcome("verification", "checked_in", distance=30.0)
        monitoring.record_flow_outcome("registration", "no_face_detected")

        snapshot = monitoring.get_health_snapshot()
        self.assertEqual(
            snapshot["outcomes"],
            {"verification:checked_in": 2, "registration:no_face_detected": 1},
        )
        sample = monitoring.REGISTRY.get_sample_value(
            "checkin_geofence_distance_meters_count"
        )
        self.assertEqual(sample, 2.0)

    def test_session_failures_update_last_error(self) -> None:
        monitoring.record_session_outcome("failed", "permission_denied")
        monitoring.record_session_outcome("succeeded")
        self.assertEqual(monitoring.get_health_snapshot()["last_error"], "permission_denied")
        sample = monitoring.REGISTRY.get_sample_value(
            "checkin_capture_session_total", {"state": "failed", "reason": "permission_denied"}
        )
        self.assertEqual(sample, 1.0)

    def test_unknown_threshold_key(self) -> None:
        with self.assertRaises(KeyError):
            monitoring.get_threshold("frame_delay")

    def test_export_metrics(self) -> None:
        monitoring.record_flow_outcome("registration", "registered")
        payload = monitoring.export_metrics()
        self.assertIn(b'checkin_flow_outcome_total{flow="registration",status="registered"} 1.0', payload)
        self.assertTrue(monitoring.prometheus_content_type().startswith("text/plain"))
