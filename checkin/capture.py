"""Camera capture session: preflight, model readiness, stream and frame capture.

A :class:`CaptureSession` holds exactly one :class:`SessionState` value at a
time. Transitions are checked against ``_TRANSITIONS``; the camera stream is
owned by a :class:`StreamGuard` and released on every terminal path.
"""

from __future__ import annotations

import enum
import logging
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import ClassVar, Dict, FrozenSet, List, Optional, Sequence, Tuple, Type

import numpy as np

from . import monitoring
from .camera import UNCONSTRAINED, MediaPlatform, StreamConstraints, VideoStream
from .config import get_metadata_timeout, get_preferred_resolution
from .errors import (
    CameraError,
    CameraErrorCode,
    CheckInError,
    ModelLoadError,
    PlaybackError,
    PreflightError,
    PreflightReason,
    SessionStateError,
)
from .pipeline import NO_FACE, FaceMatcher, ModelSource, default_model_sources, get_face_matcher

logger = logging.getLogger(__name__)


class FailureReason(str, enum.Enum):
    INSECURE_CONTEXT = "insecure_context"
    UNSUPPORTED_API = "unsupported_api"
    PERMISSION_DENIED = "permission_denied"
    NO_DEVICE = "no_device"
    MODEL_LOAD_FAILED = "model_load_failed"
    CAMERA_IN_USE = "camera_in_use"
    CAMERA_OVERCONSTRAINED = "camera_overconstrained"
    CAMERA_ERROR = "camera_error"
    PLAYBACK_FAILED = "playback_failed"
    CAPTURE_FAILED = "capture_failed"

    @property
    def hint(self) -> str:
        return _REMEDIATION_HINTS[self]

    @property
    def is_preflight(self) -> bool:
        return self in _PREFLIGHT_REASONS


_REMEDIATION_HINTS: Dict[FailureReason, str] = {
    FailureReason.INSECURE_CONTEXT: "Open the application over HTTPS (or from localhost) to use the camera.",
    FailureReason.UNSUPPORTED_API: "This browser or device cannot capture video. Try an up-to-date browser.",
    FailureReason.PERMISSION_DENIED: "Allow camera access in the browser or system settings and try again.",
    FailureReason.NO_DEVICE: "No camera was found. Connect a camera and try again.",
    FailureReason.MODEL_LOAD_FAILED: "The face recognition model could not be loaded. Check the connection and retry.",
    FailureReason.CAMERA_IN_USE: "The camera is being used by another application or tab. Close it and retry.",
    FailureReason.CAMERA_OVERCONSTRAINED: "The camera does not support the requested settings.",
    FailureReason.CAMERA_ERROR: "The camera could not be started. Reconnect it and retry.",
    FailureReason.PLAYBACK_FAILED: "The camera stream did not start. Reload the page and retry.",
    FailureReason.CAPTURE_FAILED: "The photo could not be processed. Try again.",
}

_PREFLIGHT_REASONS = frozenset(
    {
        FailureReason.INSECURE_CONTEXT,
        FailureReason.UNSUPPORTED_API,
        FailureReason.PERMISSION_DENIED,
        FailureReason.NO_DEVICE,
    }
)

_CAMERA_FAILURES: Dict[CameraErrorCode, FailureReason] = {
    CameraErrorCode.PERMISSION_DENIED: FailureReason.PERMISSION_DENIED,
    CameraErrorCode.NOT_FOUND: FailureReason.NO_DEVICE,
    CameraErrorCode.IN_USE: FailureReason.CAMERA_IN_USE,
    CameraErrorCode.OVERCONSTRAINED: FailureReason.CAMERA_OVERCONSTRAINED,
    CameraErrorCode.UNKNOWN: FailureReason.CAMERA_ERROR,
}


# -- states ---------------------------------------------------------------


@dataclass(frozen=True)
class SessionState:
    name: ClassVar[str] = "state"
    terminal: ClassVar[bool] = False


@dataclass(frozen=True)
class Idle(SessionState):
    name: ClassVar[str] = "idle"


@dataclass(frozen=True)
class Diagnosing(SessionState):
    name: ClassVar[str] = "diagnosing"


@dataclass(frozen=True)
class ModelLoading(SessionState):
    name: ClassVar[str] = "model_loading"


@dataclass(frozen=True)
class CameraAcquiring(SessionState):
    name: ClassVar[str] = "camera_acquiring"


@dataclass(frozen=True)
class Ready(SessionState):
    name: ClassVar[str] = "ready"


@dataclass(frozen=True)
class Capturing(SessionState):
    name: ClassVar[str] = "capturing"


@dataclass(frozen=True)
class Succeeded(SessionState):
    name: ClassVar[str] = "succeeded"
    terminal: ClassVar[bool] = True

    descriptor: np.ndarray = field(compare=False, repr=False, default=None)


@dataclass(frozen=True)
class Failed(SessionState):
    name: ClassVar[str] = "failed"
    terminal: ClassVar[bool] = True

    reason: FailureReason = FailureReason.CAMERA_ERROR
    detail: str = ""

    @property
    def hint(self) -> str:
        return self.reason.hint


@dataclass(frozen=True)
class Cancelled(SessionState):
    name: ClassVar[str] = "cancelled"
    terminal: ClassVar[bool] = True


_TRANSITIONS: Dict[Type[SessionState], FrozenSet[Type[SessionState]]] = {
    Idle: frozenset({Diagnosing, Cancelled}),
    Diagnosing: frozenset({ModelLoading, Failed, Cancelled}),
    ModelLoading: frozenset({CameraAcquiring, Failed, Cancelled}),
    CameraAcquiring: frozenset({Ready, Failed, Cancelled}),
    Ready: frozenset({Capturing, Failed, Cancelled}),
    Capturing: frozenset({Ready, Succeeded, Failed, Cancelled}),
    Succeeded: frozenset(),
    Failed: frozenset(),
    Cancelled: frozenset(),
}


# -- preflight ------------------------------------------------------------


@dataclass(frozen=True)
class PreflightReport:
    """Environment diagnostics gathered before a camera is used."""

    secure_context: bool
    media_capture: bool
    permission: str = "unknown"
    camera_available: Optional[bool] = None
    failure: Optional[PreflightReason] = None
    detail: str = ""

    @property
    def ok(self) -> bool:
        return self.failure is None

    def raise_for_failure(self) -> None:
        if self.failure is not None:
            raise PreflightError(self.failure, self.detail)

    def as_dict(self) -> Dict[str, object]:
        return {
            "ok": self.ok,
            "secure_context": self.secure_context,
            "media_capture": self.media_capture,
            "permission": self.permission,
            "camera_available": self.camera_available,
            "failure": self.failure.value if self.failure else None,
            "hint": FailureReason(self.failure.value).hint if self.failure else None,
            "detail": self.detail,
        }


def run_preflight(platform: MediaPlatform) -> PreflightReport:
    """Check secure context, media API and camera permission.

    The permission check acquires a throwaway unconstrained stream and stops
    it immediately.
    """

    secure = platform.is_secure_context()
    if not secure:
        return PreflightReport(False, False, failure=PreflightReason.INSECURE_CONTEXT)
    if not platform.has_media_capture():
        return PreflightReport(True, False, failure=PreflightReason.UNSUPPORTED_API)

    try:
        trial = platform.request_stream(UNCONSTRAINED)
    except CameraError as exc:
        if exc.code is CameraErrorCode.PERMISSION_DENIED:
            return PreflightReport(
                True, True, "denied", None, PreflightReason.PERMISSION_DENIED, exc.detail
            )
        if exc.code is CameraErrorCode.NOT_FOUND:
            return PreflightReport(True, True, "granted", False, PreflightReason.NO_DEVICE, exc.detail)
        # Busy or misbehaving devices are reported by the real acquisition.
        logger.info(
            "Camera permission check inconclusive: %s",
            exc.code.value,
            extra={"event": "camera_preflight", "code": exc.code.value},
        )
        return PreflightReport(True, True, "granted", True, detail=exc.detail)
    trial.stop()
    return PreflightReport(True, True, "granted", True)


# -- stream ownership -----------------------------------------------------


class StreamGuard:
    """Owns one acquired :class:`VideoStream` and stops it exactly once."""

    def __init__(self, stream: VideoStream) -> None:
        self.stream = stream
        self._released = False
        self._lock = threading.Lock()

    @property
    def released(self) -> bool:
        return self._released

    def release(self) -> None:
        with self._lock:
            if self._released:
                return
            self._released = True
        try:
            self.stream.stop()
        finally:
            monitoring.record_camera_release()

    def __enter__(self) -> "StreamGuard":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.release()


# -- session --------------------------------------------------------------


class CaptureSession:
    """Drive a camera from preflight to a single captured face descriptor.

    Usage::

        with CaptureSession(platform) as session:
            session.start()
            state = session.capture()

    ``start`` and ``capture`` return the resulting state rather than raising
    for recoverable failures; only illegal transitions raise
    :class:`SessionStateError`.
    """

    def __init__(
        self,
        platform: MediaPlatform,
        matcher: Optional[FaceMatcher] = None,
        *,
        model_sources: Optional[Sequence[ModelSource]] = None,
        preferred_resolution: Optional[Tuple[int, int]] = None,
        metadata_timeout: Optional[float] = None,
    ) -> None:
        self.platform = platform
        self.matcher = matcher if matcher is not None else get_face_matcher()
        self.model_sources = (
            list(model_sources) if model_sources is not None else default_model_sources()
        )
        self.preferred_resolution = preferred_resolution or get_preferred_resolution()
        self.metadata_timeout = (
            metadata_timeout if metadata_timeout is not None else get_metadata_timeout()
        )
        self.preflight_report: Optional[PreflightReport] = None
        self.model_source: Optional[ModelSource] = None

        self._state: SessionState = Idle()
        self._history: List[str] = [self._state.name]
        self._lock = threading.RLock()
        self._guard: Optional[StreamGuard] = None
        self._executor: Optional[ThreadPoolExecutor] = None

    # -- state ----------------------------------------------------------

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def history(self) -> Tuple[str, ...]:
        return tuple(self._history)

    @property
    def has_stream(self) -> bool:
        return self._guard is not None and not self._guard.released

    def _transition(self, new_state: SessionState) -> None:
        with self._lock:
            allowed = _TRANSITIONS[type(self._state)]
            if type(new_state) not in allowed:
                raise SessionStateError(
                    f"Illegal capture session transition {self._state.name} -> {new_state.name}"
                )
            previous = self._state
            self._state = new_state
            self._history.append(new_state.name)
        logger.debug(
            "Capture session %s -> %s",
            previous.name,
            new_state.name,
            extra={"event": "capture_transition", "from": previous.name, "to": new_state.name},
        )
        if new_state.terminal:
            reason = new_state.reason.value if isinstance(new_state, Failed) else None
            monitoring.record_session_outcome(new_state.name, reason)

    def _advance(self, new_state: SessionState) -> bool:
        """Transition unless the session was cancelled concurrently."""

        with self._lock:
            if isinstance(self._state, Cancelled):
                return False
            self._transition(new_state)
            return True

    def _release_stream(self) -> None:
        with self._lock:
            guard = self._guard
        if guard is not None:
            guard.release()

    def _fail(self, reason: FailureReason, detail: str = "") -> SessionState:
        self._release_stream()
        with self._lock:
            if not self._state.terminal:
                self._transition(Failed(reason, detail))
        logger.warning(
            "Capture session failed: %s",
            reason.value,
            extra={"event": "capture_failed", "reason": reason.value, "detail": detail},
        )
        return self._state

    def _fail_from(self, exc: CheckInError) -> SessionState:
        if isinstance(exc, PreflightError):
            return self._fail(FailureReason(exc.reason.value), exc.detail)
        if isinstance(exc, ModelLoadError):
            return self._fail(FailureReason.MODEL_LOAD_FAILED, str(exc))
        if isinstance(exc, CameraError):
            return self._fail(_CAMERA_FAILURES[exc.code], exc.detail)
        if isinstance(exc, PlaybackError):
            return self._fail(FailureReason.PLAYBACK_FAILED, str(exc))
        return self._fail(FailureReason.CAPTURE_FAILED, str(exc))

    # -- start ----------------------------------------------------------

    def start(self) -> SessionState:
        """Run preflight, load the model and acquire the camera.

        Model loading runs on a worker thread while the camera is acquired;
        both are joined before the session becomes ``Ready``.
        """

        if not self._advance(Diagnosing()):
            return self._state

        report = run_preflight(self.platform)
        self.preflight_report = report
        try:
            report.raise_for_failure()
        except PreflightError as exc:
            return self._fail_from(exc)

        if not self._advance(ModelLoading()):
            return self._state
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="model-load")
        model_future: Future = self._executor.submit(self.matcher.ensure_loaded, self.model_sources)

        try:
            if not self._advance(CameraAcquiring()):
                return self._state
            stream = self._acquire_stream()
            if not self._attach(stream):
                return self._state
            self._start_playback(stream)
            self.model_source = model_future.result()
        except CheckInError as exc:
            return self._fail_from(exc)

        self._advance(Ready())
        return self._state

    def _acquire_stream(self) -> VideoStream:
        if self.has_stream:
            raise SessionStateError("A camera stream is already held by this session")

        width, height = self.preferred_resolution
        started = time.perf_counter()
        try:
            try:
                stream = self.platform.request_stream(StreamConstraints(width, height))
            except CameraError as exc:
                if exc.code is not CameraErrorCode.OVERCONSTRAINED:
                    raise
                logger.info(
                    "Camera rejected %dx%d, retrying unconstrained",
                    width,
                    height,
                    extra={"event": "camera_acquire", "status": "retry"},
                )
                stream = self.platform.request_stream(UNCONSTRAINED)
        except CameraError as exc:
            monitoring.record_camera_acquire(False, time.perf_counter() - started, code=exc.code.value)
            raise
        monitoring.record_camera_acquire(True, time.perf_counter() - started)
        return stream

    def _attach(self, stream: VideoStream) -> bool:
        with self._lock:
            guard = StreamGuard(stream)
            if isinstance(self._state, Cancelled):
                cancelled = True
            else:
                cancelled = False
                self._guard = guard
        if cancelled:
            guard.release()
            return False
        return True

    def _start_playback(self, stream: VideoStream) -> None:
        try:
            stream.play()
            return
        except PlaybackError as exc:
            logger.debug("Immediate playback failed (%s); waiting for metadata", exc)

        if not stream.wait_for_metadata(self.metadata_timeout):
            logger.info(
                "Stream metadata not ready after %.1fs; forcing playback",
                self.metadata_timeout,
                extra={"event": "camera_playback", "status": "forced"},
            )
        stream.play()

    # -- capture --------------------------------------------------------

    def capture(self) -> SessionState:
        """Capture one frame and extract a descriptor.

        Returns ``Ready`` again when no single face was found, ``Succeeded``
        carrying the descriptor otherwise. The stream is released before
        ``Succeeded`` is reported.
        """

        if not self._advance(Capturing()):
            return self._state
        guard = self._guard
        if guard is None:
            raise SessionStateError("Capturing without an attached stream")

        stream = guard.stream
        stream.pause()
        frame = stream.read_frame()
        if frame is None:
            result = NO_FACE
        else:
            try:
                result = self.matcher.extract_descriptor(frame)
            except Exception as exc:
                logger.exception(
                    "Descriptor extraction failed", extra={"event": "face_extract", "status": "error"}
                )
                return self._fail(FailureReason.CAPTURE_FAILED, str(exc))

        if result is NO_FACE:
            stream.resume()
            self._advance(Ready())
            return self._state

        guard.release()
        self._advance(Succeeded(descriptor=result))
        return self._state

    # -- teardown -------------------------------------------------------

    def cancel(self) -> SessionState:
        with self._lock:
            if self._state.terminal:
                return self._state
            self._transition(Cancelled())
        self._release_stream()
        logger.info("Capture session cancelled", extra={"event": "capture_cancelled"})
        return self._state

    def close(self) -> None:
        """Release every resource; cancels a session that is still live."""

        try:
            if not self._state.terminal:
                self.cancel()
            self._release_stream()
        finally:
            if self._executor is not None:
                self._executor.shutdown(wait=False)
                self._executor = None

    def __enter__(self) -> "CaptureSession":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


__all__ = [
    "CameraAcquiring",
    "Cancelled",
    "CaptureSession",
    "Capturing",
    "Diagnosing",
    "Failed",
    "FailureReason",
    "Idle",
    "ModelLoading",
    "PreflightReport",
    "Ready",
    "SessionState",
    "StreamGuard",
    "Succeeded",
    "run_preflight",
]
