"""Camera platform adapters used by :class:`checkin.capture.CaptureSession`.

A *platform* answers the preflight questions (secure context, media API,
permission) and hands out *streams*. Two implementations ship here: a local
webcam driven by OpenCV for kiosk use and a still-frame platform wrapping an
image uploaded by a browser.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from typing import Dict, Optional, Protocol, Tuple

import cv2
import numpy as np

from .errors import CameraError, CameraErrorCode, PlaybackError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StreamConstraints:
    """Requested stream parameters; ``None`` dimensions mean unconstrained."""

    width: Optional[int] = None
    height: Optional[int] = None
    facing_mode: str = "user"

    @property
    def is_constrained(self) -> bool:
        return self.width is not None or self.height is not None


UNCONSTRAINED = StreamConstraints()


class VideoStream(Protocol):
    def play(self) -> None:
        """Start playback; raise :class:`PlaybackError` if it cannot start yet."""

    def wait_for_metadata(self, timeout: float) -> bool:
        """Block until stream dimensions are known or ``timeout`` elapses."""

    def pause(self) -> None:
        ...

    def resume(self) -> None:
        ...

    def read_frame(self) -> Optional[np.ndarray]:
        ...

    def stop(self) -> None:
        """Release the underlying device; calling twice is harmless."""


class MediaPlatform(Protocol):
    def is_secure_context(self) -> bool:
        ...

    def has_media_capture(self) -> bool:
        ...

    def request_stream(self, constraints: StreamConstraints) -> VideoStream:
        """Return a live stream or raise :class:`CameraError`."""


# -- OpenCV ---------------------------------------------------------------

_DEVICE_LOCKS: Dict[int, threading.Lock] = {}
_DEVICE_LOCKS_GUARD = threading.Lock()


def _device_lock(index: int) -> threading.Lock:
    with _DEVICE_LOCKS_GUARD:
        return _DEVICE_LOCKS.setdefault(index, threading.Lock())


class OpenCVVideoStream:
    """A :class:`VideoStream` backed by ``cv2.VideoCapture``."""

    def __init__(self, capture: "cv2.VideoCapture", lock: threading.Lock) -> None:
        self._capture = capture
        self._lock = lock
        self._playing = False
        self._paused = False
        self._last_frame: Optional[np.ndarray] = None
        self._stopped = False

    @property
    def dimensions(self) -> Tuple[int, int]:
        return (
            int(self._capture.get(cv2.CAP_PROP_FRAME_WIDTH)),
            int(self._capture.get(cv2.CAP_PROP_FRAME_HEIGHT)),
        )

    def play(self) -> None:
        ok, frame = self._capture.read()
        if not ok or frame is None:
            raise PlaybackError("camera returned no frame")
        self._last_frame = frame
        self._playing = True
        self._paused = False

    def wait_for_metadata(self, timeout: float) -> bool:
        # OpenCV reports dimensions once the device has negotiated a format.
        deadline = time.monotonic() + max(timeout, 0.0)
        while True:
            width, height = self.dimensions
            if width > 0 and height > 0:
                return True
            if time.monotonic() >= deadline:
                return False
            time.sleep(0.05)

    def pause(self) -> None:
        self._paused = True

    def resume(self) -> None:
        self._paused = False

    def read_frame(self) -> Optional[np.ndarray]:
        if self._stopped:
            return None
        if self._paused:
            return None if self._last_frame is None else self._last_frame.copy()
        ok, frame = self._capture.read()
        if ok and frame is not None:
            self._last_frame = frame
        return None if self._last_frame is None else self._last_frame.copy()

    def stop(self) -> None:
        if self._stopped:
            return
        self._stopped = True
        self._playing = False
        try:
            self._capture.release()
        finally:
            self._lock.release()
            logger.debug("OpenCV capture released", extra={"event": "camera_release"})


class OpenCVMediaPlatform:
    """Local webcam platform for kiosk and diagnostics use."""

    def __init__(self, device_index: int = 0) -> None:
        self.device_index = device_index

    def is_secure_context(self) -> bool:
        # A local device is not exposed to a network origin.
        return True

    def has_media_capture(self) -> bool:
        return hasattr(cv2, "VideoCapture")

    def request_stream(self, constraints: StreamConstraints) -> OpenCVVideoStream:
        lock = _device_lock(self.device_index)
        if not lock.acquire(blocking=False):
            raise CameraError(
                CameraErrorCode.IN_USE, f"camera {self.device_index} is held by another session"
            )

        capture = None
        try:
            capture = cv2.VideoCapture(self.device_index)
            if not capture.isOpened():
                raise CameraError(
                    CameraErrorCode.NOT_FOUND, f"camera {self.device_index} could not be opened"
                )
            if constraints.is_constrained:
                if constraints.width is not None:
                    capture.set(cv2.CAP_PROP_FRAME_WIDTH, constraints.width)
                if constraints.height is not None:
                    capture.set(cv2.CAP_PROP_FRAME_HEIGHT, constraints.height)
                width = int(capture.get(cv2.CAP_PROP_FRAME_WIDTH))
                height = int(capture.get(cv2.CAP_PROP_FRAME_HEIGHT))
                if (constraints.width, constraints.height) != (width, height):
                    raise CameraError(
                        CameraErrorCode.OVERCONSTRAINED,
                        f"requested {constraints.width}x{constraints.height}, device offers {width}x{height}",
                    )
        except cv2.error as exc:
            self._abandon(capture, lock)
            raise CameraError(CameraErrorCode.UNKNOWN, str(exc)) from exc
        except BaseException:
            self._abandon(capture, lock)
            raise

        return OpenCVVideoStream(capture, lock)

    @staticmethod
    def _abandon(capture: Optional["cv2.VideoCapture"], lock: threading.Lock) -> None:
        try:
            if capture is not None:
                capture.release()
        finally:
            lock.release()


# -- Uploaded still frame -------------------------------------------------


def decode_image(data: bytes) -> Optional[np.ndarray]:
    """Decode encoded image bytes (JPEG/PNG) into a BGR array."""

    buffer = np.frombuffer(data, dtype=np.uint8)
    if buffer.size == 0:
        logger.warning("Encountered empty image payload.")
        return None
    image = cv2.imdecode(buffer, cv2.IMREAD_COLOR)
    if image is None:
        logger.warning("Failed to decode image payload.")
    return image


class StillFrameStream:
    """A stream that always yields the same uploaded frame."""

    def __init__(self, frame: np.ndarray) -> None:
        self._frame: Optional[np.ndarray] = frame

    def play(self) -> None:
        return None

    def wait_for_metadata(self, timeout: float) -> bool:
        return self._frame is not None

    def pause(self) -> None:
        return None

    def resume(self) -> None:
        return None

    def read_frame(self) -> Optional[np.ndarray]:
        return None if self._frame is None else self._frame.copy()

    def stop(self) -> None:
        self._frame = None


class StillFramePlatform:
    """Platform wrapping a frame captured by a browser and uploaded over HTTP.

    ``secure`` reflects the origin the browser captured from; a frame is
    only trusted when it came from HTTPS or a trusted local host.
    """

    def __init__(self, frame: Optional[np.ndarray], *, secure: bool) -> None:
        self._frame = frame
        self._secure = secure

    def is_secure_context(self) -> bool:
        return self._secure

    def has_media_capture(self) -> bool:
        return True

    def request_stream(self, constraints: StreamConstraints) -> StillFrameStream:
        if self._frame is None:
            raise CameraError(CameraErrorCode.NOT_FOUND, "no frame was uploaded")
        return StillFrameStream(self._frame)


__all__ = [
    "MediaPlatform",
    "OpenCVMediaPlatform",
    "OpenCVVideoStream",
    "StillFramePlatform",
    "StillFrameStream",
    "StreamConstraints",
    "UNCONSTRAINED",
    "VideoStream",
    "decode_image",
]
