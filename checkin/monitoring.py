"""Monitoring utilities for capture sessions and check-in outcomes."""

from __future__ import annotations

import datetime as _dt
import logging
import threading
import time
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from django.conf import settings

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)

logger = logging.getLogger(__name__)


@dataclass
class _HealthState:
    """Mutable snapshot of the latest monitoring information."""

    camera_active: bool = False
    last_camera_start: Optional[Dict[str, Any]] = None
    last_model_load: Optional[Dict[str, Any]] = None
    last_error: Optional[str] = None
    outcomes: Dict[str, int] = field(default_factory=dict)


_STATE = _HealthState()
_STATE_LOCK = threading.Lock()
_ALERTS: deque[Dict[str, Any]] = deque()

_THRESHOLD_SETTING_NAMES: Dict[str, str] = {
    "camera_start": "CHECKIN_CAMERA_START_ALERT_SECONDS",
    "model_load": "CHECKIN_MODEL_LOAD_ALERT_SECONDS",
}

_DEFAULT_THRESHOLDS: Dict[str, float] = {
    "camera_start": 3.0,
    "model_load": 4.0,
}


def _max_alert_history() -> int:
    value = getattr(settings, "CHECKIN_HEALTH_ALERT_HISTORY", 50)
    try:
        numeric = int(value)
    except (TypeError, ValueError):  # pragma: no cover
        numeric = 50
    return max(1, numeric)


def _now_timestamp() -> float:
    return time.time()


def _format_timestamp(ts: Optional[float]) -> Optional[str]:
    if ts is None:
        return None
    return _dt.datetime.fromtimestamp(ts, tz=_dt.timezone.utc).isoformat()


def _create_event(status: str, latency: Optional[float], error: Optional[str], **extra) -> Dict[str, Any]:
    event = {
        "timestamp": _now_timestamp(),
        "status": status,
        "latency": latency,
        "error": error,
    }
    event.update(extra)
    return event


def _append_alert(
    event_type: str, severity: str, message: str, data: Optional[Dict[str, Any]] = None
) -> None:
    payload = {
        "timestamp": _format_timestamp(_now_timestamp()),
        "type": event_type,
        "severity": severity,
        "message": message,
        "data": data or {},
    }
    with _STATE_LOCK:
        _ALERTS.append(payload)
        max_alerts = _max_alert_history()
        while len(_ALERTS) > max_alerts:
            _ALERTS.popleft()


def _build_metrics() -> None:
    global REGISTRY
    global MODEL_LOAD_COUNTER
    global MODEL_LOAD_LATENCY
    global CAMERA_ACQUIRE_COUNTER
    global CAMERA_ACQUIRE_LATENCY
    global CAMERA_ACTIVE_GAUGE
    global SESSION_OUTCOME_COUNTER
    global CHECKIN_OUTCOME_COUNTER
    global GEOFENCE_DISTANCE_HISTOGRAM

    REGISTRY = CollectorRegistry(auto_describe=True)

    MODEL_LOAD_COUNTER = Counter(
        "checkin_model_load",
        "Embedding model load attempts",
        labelnames=("source", "status"),
        registry=REGISTRY,
    )
    MODEL_LOAD_LATENCY = Histogram(
        "checkin_model_load_latency_seconds",
        "Embedding model load latency in seconds",
        labelnames=("source",),
        buckets=(0.1, 0.5, 1.0, 2.0, 4.0, 8.0, 16.0, 32.0),
        registry=REGISTRY,
    )
    CAMERA_ACQUIRE_COUNTER = Counter(
        "checkin_camera_acquire",
        "Camera stream requests",
        labelnames=("status",),
        registry=REGISTRY,
    )
    CAMERA_ACQUIRE_LATENCY = Histogram(
        "checkin_camera_acquire_latency_seconds",
        "Camera stream acquisition latency in seconds",
        buckets=(0.05, 0.1, 0.25, 0.5, 1.0, 2.0, 3.0, 5.0),
        registry=REGISTRY,
    )
    CAMERA_ACTIVE_GAUGE = Gauge(
        "checkin_camera_active",
        "1 while a capture session holds a camera stream",
        registry=REGISTRY,
    )
    SESSION_OUTCOME_COUNTER = Counter(
        "checkin_capture_session",
        "Terminal capture session states",
        labelnames=("state", "reason"),
        registry=REGISTRY,
    )
    CHECKIN_OUTCOME_COUNTER = Counter(
        "checkin_flow_outcome",
        "Registration and verification flow outcomes",
        labelnames=("flow", "status"),
        registry=REGISTRY,
    )
    GEOFENCE_DISTANCE_HISTOGRAM = Histogram(
        "checkin_geofence_distance_meters",
        "Distance between the check-in position and the school centre",
        buckets=(10, 25, 50, 100, 200, 500, 1000, 5000, 20000),
        registry=REGISTRY,
    )


_build_metrics()


def reset_for_tests() -> None:
    """Reset in-memory state and metrics (intended for test suites)."""

    global _STATE
    with _STATE_LOCK:
        _STATE = _HealthState()
        _ALERTS.clear()
    _build_metrics()


def get_threshold(key: str) -> float:
    """Fetch the configured alert threshold for the supplied key."""

    if key not in _THRESHOLD_SETTING_NAMES:
        raise KeyError(f"Unknown threshold key: {key}")
    value = getattr(settings, _THRESHOLD_SETTING_NAMES[key], _DEFAULT_THRESHOLDS[key])
    try:
        return float(value)
    except (TypeError, ValueError):  # pragma: no cover
        return _DEFAULT_THRESHOLDS[key]


def get_alert_thresholds() -> Dict[str, float]:
    return {key: get_threshold(key) for key in _THRESHOLD_SETTING_NAMES}


def _metric_value(name: str, labels: Optional[Dict[str, str]] = None) -> float:
    sample = REGISTRY.get_sample_value(name, labels or {})
    return sample or 0.0


def _check_latency(key: str, alert_type: str, label: str, latency: Optional[float], extra: Dict[str, Any]) -> None:
    threshold = get_threshold(key)
    if latency is None or latency <= threshold:
        return
    message = f"{label} latency {latency:.3f}s exceeded threshold {threshold:.3f}s"
    logger.warning(message, extra={**extra, "severity": "warning", "threshold": threshold})
    _append_alert(alert_type, "warning", message, {"latency": latency, "threshold": threshold})


def record_model_load(
    source: str, success: bool, latency: Optional[float], error: Optional[str] = None
) -> None:
    """Record an embedding model load attempt from ``source``."""

    status = "success" if success else "failure"
    MODEL_LOAD_COUNTER.labels(source=source, status=status).inc()
    if latency is not None:
        MODEL_LOAD_LATENCY.labels(source=source).observe(latency)
    with _STATE_LOCK:
        _STATE.last_model_load = _create_event(status, latency, error, source=source)
        if not success:
            _STATE.last_error = error
    log_extra = {"event": "model_load", "source": source, "status": status, "latency_seconds": latency}
    if success:
        logger.info("Embedding model loaded from %s", source, extra=log_extra)
        _check_latency("model_load", "model_load_latency", "Model load", latency, log_extra)
    else:
        _append_alert(
            "model_load_failure",
            "error",
            f"Embedding model failed to load from {source}",
            {"error": error or "unknown", "source": source},
        )


def record_camera_acquire(
    success: bool, latency: Optional[float], code: Optional[str] = None
) -> None:
    """Record the result of a camera stream request."""

    status = "success" if success else (code or "failure")
    CAMERA_ACQUIRE_COUNTER.labels(status=status).inc()
    if latency is not None:
        CAMERA_ACQUIRE_LATENCY.observe(latency)
    with _STATE_LOCK:
        _STATE.last_camera_start = _create_event(status, latency, None if success else code)
        if success:
            _STATE.camera_active = True
            CAMERA_ACTIVE_GAUGE.set(1)
    log_extra = {"event": "camera_acquire", "status": status, "latency_seconds": latency}
    if success:
        logger.info("Camera stream acquired", extra=log_extra)
        _check_latency("camera_start", "camera_start_latency", "Camera start", latency, log_extra)
    else:
        logger.warning("Camera stream request failed: %s", status, extra=log_extra)


def record_camera_release() -> None:
    CAMERA_ACTIVE_GAUGE.set(0)
    with _STATE_LOCK:
        _STATE.camera_active = False
    logger.debug("Camera stream released", extra={"event": "camera_release"})


def record_session_outcome(state: str, reason: Optional[str] = None) -> None:
    """Count a capture session reaching a terminal state."""

    SESSION_OUTCOME_COUNTER.labels(state=state, reason=reason or "").inc()
    if state == "failed":
        with _STATE_LOCK:
            _STATE.last_error = reason


def record_flow_outcome(flow: str, status: str, distance: Optional[float] = None) -> None:
    """Count a registration/verification outcome and track geofence distance."""

    CHECKIN_OUTCOME_COUNTER.labels(flow=flow, status=status).inc()
    if distance is not None:
        GEOFENCE_DISTANCE_HISTOGRAM.observe(max(0.0, distance))
    with _STATE_LOCK:
        key = f"{flow}:{status}"
        _STATE.outcomes[key] = _STATE.outcomes.get(key, 0) + 1


def get_health_snapshot() -> Dict[str, Any]:
    """Return a serialisable snapshot of pipeline health and alert history."""

    with _STATE_LOCK:
        last_start = dict(_STATE.last_camera_start) if _STATE.last_camera_start else None
        if last_start:
            last_start["timestamp"] = _format_timestamp(last_start["timestamp"])
        last_load = dict(_STATE.last_model_load) if _STATE.last_model_load else None
        if last_load:
            last_load["timestamp"] = _format_timestamp(last_load["timestamp"])
        camera = {
            "active": _STATE.camera_active,
            "last_start": last_start,
        }
        model = {"last_load": last_load}
        outcomes = dict(_STATE.outcomes)
        last_error = _STATE.last_error
        alerts = list(_ALERTS)
    return {
        "camera": camera,
        "model": model,
        "outcomes": outcomes,
        "last_error": last_error,
        "alerts": alerts,
        "metrics": {
            "camera_acquire_success": _metric_value(
                "checkin_camera_acquire_total", {"status": "success"}
            ),
        },
        "thresholds": get_alert_thresholds(),
    }


def export_metrics() -> bytes:
    """Serialise the Prometheus metrics registry."""

    return generate_latest(REGISTRY)


def prometheus_content_type() -> str:
    return CONTENT_TYPE_LATEST


__all__ = [
    "export_metrics",
    "get_alert_thresholds",
    "get_health_snapshot",
    "get_threshold",
    "prometheus_content_type",
    "record_camera_acquire",
    "record_camera_release",
    "record_flow_outcome",
    "record_model_load",
    "record_session_outcome",
    "reset_for_tests",
]
