"""Fakes for the camera, embedding model and record store collaborators."""

from __future__ import annotations

import datetime as dt
import itertools
from typing import Dict, List, Optional, Tuple

import numpy as np

from checkin.camera import StreamConstraints
from checkin.errors import DuplicateAttendance, PersistenceError, PlaybackError, ProfileNotFound
from checkin.geo import EARTH_RADIUS_METERS, Coordinates
from checkin.pipeline import ModelSource
from checkin.store import AttendanceRecord, ProfileRecord, SchoolGeofence

SCHOOL = Coordinates(-23.5505, -46.6333)


def make_descriptor(seed: int = 0, scale: float = 0.05) -> np.ndarray:
    rng = np.random.default_rng(seed)
    return rng.normal(0.0, scale, 128)


def point_north_of(origin: Coordinates, meters: float) -> Coordinates:
    """Return a point ``meters`` due north of ``origin`` (exact along a meridian)."""

    delta = np.degrees(meters / EARTH_RADIUS_METERS)
    return Coordinates(origin.latitude + float(delta), origin.longitude)


def frame() -> np.ndarray:
    return np.zeros((8, 8, 3), dtype=np.uint8)


class FakeStream:
    def __init__(self, frames: int = 5, play_failures: int = 0, metadata: bool = True) -> None:
        self.frames_left = frames
        self.play_failures = play_failures
        self.metadata = metadata
        self.play_calls = 0
        self.metadata_waits: List[float] = []
        self.paused = False
        self.resumed = 0
        self.stop_calls = 0

    @property
    def stopped(self) -> bool:
        return self.stop_calls > 0

    def play(self) -> None:
        self.play_calls += 1
        if self.play_failures > 0:
            self.play_failures -= 1
            raise PlaybackError("video surface not mounted")

    def wait_for_metadata(self, timeout: float) -> bool:
        self.metadata_waits.append(timeout)
        return self.metadata

    def pause(self) -> None:
        self.paused = True

    def resume(self) -> None:
        self.paused = False
        self.resumed += 1

    def read_frame(self) -> Optional[np.ndarray]:
        if self.stopped or self.frames_left <= 0:
            return None
        self.frames_left -= 1
        return frame()

    def stop(self) -> None:
        self.stop_calls += 1


class FakePlatform:
    """``errors`` are consumed one per stream request; ``None`` lets a request succeed."""

    def __init__(
        self,
        *,
        secure: bool = True,
        media: bool = True,
        errors: Optional[list] = None,
        play_failures: int = 0,
        metadata: bool = True,
    ) -> None:
        self.secure = secure
        self.media = media
        self.errors = list(errors or [])
        self.play_failures = play_failures
        self.metadata = metadata
        self.requests: List[StreamConstraints] = []
        self.streams: List[FakeStream] = []

    def is_secure_context(self) -> bool:
        return self.secure

    def has_media_capture(self) -> bool:
        return self.media

    def request_stream(self, constraints: StreamConstraints) -> FakeStream:
        self.requests.append(constraints)
        error = self.errors.pop(0) if self.errors else None
        if error is not None:
            raise error
        stream = FakeStream(play_failures=self.play_failures, metadata=self.metadata)
        self.streams.append(stream)
        return stream

    @property
    def session_stream(self) -> FakeStream:
        """The stream acquired after the preflight permission check."""
        return self.streams[-1]


class FakeBackend:
    """Embedding backend returning queued ``represent`` payloads in order."""

    def __init__(self, results: Optional[list] = None, failing_sources: Tuple[str, ...] = ()) -> None:
        self.results = list(results or [])
        self.failing_sources = set(failing_sources)
        self.loaded: List[str] = []
        self.represent_calls = 0

    def load_model(self, source: ModelSource) -> None:
        self.loaded.append(source.name)
        if source.name in self.failing_sources:
            raise OSError(f"weights unavailable from {source.name}")

    def represent(self, frame: np.ndarray):
        self.represent_calls += 1
        if not self.results:
            return []
        return self.results.pop(0)


def face(descriptor: np.ndarray) -> list:
    """A DeepFace-style payload with exactly one detected face."""

    return [{"embedding": descriptor.tolist(), "facial_area": {"x": 0, "y": 0, "w": 4, "h": 4}}]


class InMemoryStore:
    def __init__(self, school: Optional[SchoolGeofence] = None) -> None:
        self.profiles: Dict[int, ProfileRecord] = {}
        self.school = school
        self.events: List[AttendanceRecord] = []
        self.fail_inserts = False
        self._ids = itertools.count(1)

    def add_profile(self, profile_id: int, descriptor: Optional[np.ndarray] = None) -> None:
        self.profiles[profile_id] = ProfileRecord(
            id=profile_id,
            full_name=f"Student {profile_id}",
            registration_number=f"REG{profile_id:04d}",
            role="student",
            reference_descriptor=descriptor,
        )

    def fetch(self, profile_id: int) -> ProfileRecord:
        try:
            return self.profiles[profile_id]
        except KeyError as exc:
            raise ProfileNotFound(str(profile_id)) from exc

    def fetch_school_location(self) -> Optional[SchoolGeofence]:
        return self.school

    def upsert_reference_descriptor(self, profile_id: int, descriptor: np.ndarray) -> None:
        current = self.fetch(profile_id)
        self.profiles[profile_id] = ProfileRecord(
            id=current.id,
            full_name=current.full_name,
            registration_number=current.registration_number,
            role=current.role,
            reference_descriptor=np.array(descriptor, dtype=np.float64),
        )

    def insert_attendance(self, profile_id, latitude, longitude, is_valid, distance_meters):
        if self.fail_inserts:
            raise PersistenceError("connection reset")
        today = dt.date.today()
        if any(e.profile_id == profile_id and e.attendance_date == today for e in self.events):
            raise DuplicateAttendance(f"profile {profile_id} already checked in")
        record = AttendanceRecord(
            id=next(self._ids),
            profile_id=profile_id,
            latitude=latitude,
            longitude=longitude,
            is_valid=is_valid,
            distance_meters=distance_meters,
            attendance_date=today,
        )
        self.events.append(record)
        return record


SOURCES = [ModelSource("local"), ModelSource("remote")]
