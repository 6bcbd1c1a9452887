"""Face descriptor extraction and comparison.

The heavy lifting (face detection and the embedding network) is delegated to
an :class:`EmbeddingBackend`; by default DeepFace running the 128-dimensional
``Facenet`` model. Everything else here is pure numpy so the matching policy
can be exercised with synthetic vectors.
"""

from __future__ import annotations

import logging
import math
import os
import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Protocol, Sequence, Tuple, Union

import numpy as np

from . import monitoring
from .config import (
    FACE_MATCH_THRESHOLD,
    get_detector_backend,
    get_face_match_threshold,
    get_model_fallback_home,
    get_model_name,
    get_model_primary_home,
)
from .errors import ModelLoadError

logger = logging.getLogger(__name__)

DESCRIPTOR_LENGTH = 128


class NoFaceDetected:
    """Sentinel returned when a frame holds zero faces or more than one."""

    _instance: Optional["NoFaceDetected"] = None

    def __new__(cls) -> "NoFaceDetected":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "NO_FACE"

    def __bool__(self) -> bool:
        return False


NO_FACE = NoFaceDetected()

DescriptorOrNoFace = Union[np.ndarray, NoFaceDetected]


def as_descriptor(values: Any) -> np.ndarray:
    """Coerce ``values`` into a 128-length float64 vector of finite numbers."""

    try:
        vector = np.array([float(value) for value in values], dtype=np.float64)
    except (TypeError, ValueError) as exc:
        raise ValueError("Face descriptor must be a sequence of numbers") from exc

    if vector.shape != (DESCRIPTOR_LENGTH,):
        raise ValueError(
            f"Face descriptor must have {DESCRIPTOR_LENGTH} values, got {vector.size}"
        )
    if not np.all(np.isfinite(vector)):
        raise ValueError("Face descriptor values must be finite")
    return vector


def extract_all_embeddings(
    representations: Any,
) -> List[Tuple[np.ndarray, Optional[Dict[str, int]]]]:
    """Normalise a DeepFace ``represent`` payload into ``(embedding, facial_area)`` pairs.

    Entries whose embedding cannot be coerced to floats are dropped.
    """

    if isinstance(representations, dict):
        representations = [representations]
    if not isinstance(representations, list):
        logger.debug("Unexpected representation payload: %r", type(representations))
        return []

    results: List[Tuple[np.ndarray, Optional[Dict[str, int]]]] = []
    for rep in representations:
        if isinstance(rep, dict):
            raw = rep.get("embedding")
            area = rep.get("facial_area")
            facial_area = area if isinstance(area, dict) else None
        elif isinstance(rep, (list, tuple, np.ndarray)):
            raw, facial_area = rep, None
        else:
            continue

        if raw is None:
            continue
        try:
            embedding = np.array([float(value) for value in raw], dtype=np.float64)
        except (TypeError, ValueError):
            logger.debug("Unable to coerce embedding values to floats")
            continue
        if embedding.size:
            results.append((embedding, facial_area))
    return results


def is_within_distance_threshold(distance: Optional[float], threshold: float) -> bool:
    """Return ``True`` when the distance does not exceed the threshold (inclusive)."""

    if distance is None or math.isnan(distance):
        return False
    return bool(distance <= threshold)


@dataclass(frozen=True)
class MatchResult:
    """Outcome of comparing a live descriptor against a stored reference.

    ``confidence`` is ``1 - distance_score`` and goes negative when the
    distance exceeds 1; it is not clamped.
    """

    matched: bool
    confidence: float
    distance_score: float


@dataclass(frozen=True)
class ModelSource:
    """Where embedding model weights come from.

    ``home`` is the DeepFace home directory (``None`` keeps DeepFace's default
    location). When ``allow_download`` is false the weights must already be
    present under ``home``.
    """

    name: str
    home: Optional[Path] = None
    allow_download: bool = True


def default_model_sources() -> List[ModelSource]:
    """Return the configured primary (local) and fallback (remote) sources."""

    fallback_home = get_model_fallback_home()
    return [
        ModelSource("local", home=get_model_primary_home(), allow_download=False),
        ModelSource(
            "remote",
            home=Path(fallback_home) if fallback_home else None,
            allow_download=True,
        ),
    ]


class EmbeddingBackend(Protocol):
    """Opaque face detection + embedding function."""

    def load_model(self, source: ModelSource) -> None:
        ...

    def represent(self, frame: np.ndarray) -> Any:
        ...


_DEEPFACE_HOME_LOCK = threading.Lock()


@contextmanager
def deepface_home(home: Optional[Path]) -> Iterator[None]:
    """Point DeepFace at ``home`` for the duration of the block.

    DeepFace only reads its weights directory from ``DEEPFACE_HOME``; the
    previous value is restored on exit and concurrent loads are serialised.
    """

    if home is None:
        yield
        return

    with _DEEPFACE_HOME_LOCK:
        previous = os.environ.get("DEEPFACE_HOME")
        os.environ["DEEPFACE_HOME"] = str(home)
        try:
            yield
        finally:
            if previous is None:
                os.environ.pop("DEEPFACE_HOME", None)
            else:
                os.environ["DEEPFACE_HOME"] = previous


class DeepFaceBackend:
    """Embedding backend built on :func:`deepface.DeepFace.represent`."""

    WEIGHTS_FILES = {
        "Facenet": "facenet_weights.h5",
        "Dlib": "dlib_face_recognition_resnet_model_v1.dat",
    }

    def __init__(
        self,
        model_name: Optional[str] = None,
        detector_backend: Optional[str] = None,
    ) -> None:
        self.model_name = model_name or get_model_name()
        self.detector_backend = detector_backend or get_detector_backend()

    def _weights_path(self, home: Path) -> Optional[Path]:
        filename = self.WEIGHTS_FILES.get(self.model_name)
        if filename is None:
            return None
        return Path(home) / ".deepface" / "weights" / filename

    def load_model(self, source: ModelSource) -> None:
        from deepface import DeepFace

        if source.home is not None and not source.allow_download:
            weights = self._weights_path(source.home)
            if weights is not None and not weights.exists():
                raise FileNotFoundError(f"Model weights not found at {weights}")
        # build_model caches the loaded model, so later represent() calls no
        # longer need the weights directory.
        with deepface_home(source.home):
            DeepFace.build_model(model_name=self.model_name)

    def represent(self, frame: np.ndarray) -> Any:
        from deepface import DeepFace

        try:
            return DeepFace.represent(
                img_path=frame,
                model_name=self.model_name,
                detector_backend=self.detector_backend,
                enforce_detection=True,
            )
        except ValueError:
            # DeepFace raises ValueError when enforce_detection finds no face.
            return []


class FaceMatcher:
    """Extract single-face descriptors and compare them with a threshold policy."""

    def __init__(
        self,
        backend: Optional[EmbeddingBackend] = None,
        threshold: Optional[float] = None,
    ) -> None:
        self.backend = backend if backend is not None else DeepFaceBackend()
        self._threshold = threshold
        self._load_lock = threading.Lock()
        self.loaded_source: Optional[ModelSource] = None

    @property
    def threshold(self) -> float:
        if self._threshold is not None:
            return self._threshold
        return get_face_match_threshold()

    def load_model(self, sources: Sequence[ModelSource]) -> ModelSource:
        """Load the embedding model from the first source that works.

        Raises :class:`ModelLoadError` once every source has failed.
        """

        errors: List[str] = []
        for source in sources:
            started = time.perf_counter()
            try:
                self.backend.load_model(source)
            except Exception as exc:
                latency = time.perf_counter() - started
                monitoring.record_model_load(source.name, False, latency, error=str(exc))
                logger.warning(
                    "Embedding model load from %s failed: %s",
                    source.name,
                    exc,
                    extra={"event": "model_load", "source": source.name, "status": "failure"},
                )
                errors.append(f"{source.name}: {exc}")
                continue
            monitoring.record_model_load(source.name, True, time.perf_counter() - started)
            self.loaded_source = source
            return source

        raise ModelLoadError("; ".join(errors) or "no model source configured")

    def ensure_loaded(self, sources: Sequence[ModelSource]) -> ModelSource:
        """Load the model unless a previous call already succeeded."""

        with self._load_lock:
            if self.loaded_source is not None:
                return self.loaded_source
            return self.load_model(sources)

    def extract_descriptor(self, frame: np.ndarray) -> DescriptorOrNoFace:
        """Return the descriptor of the single face in ``frame`` or ``NO_FACE``."""

        faces = extract_all_embeddings(self.backend.represent(frame))
        if len(faces) != 1:
            logger.info(
                "Expected exactly one face, found %d",
                len(faces),
                extra={"event": "face_extract", "faces": len(faces)},
            )
            return NO_FACE
        embedding, _area = faces[0]
        try:
            return as_descriptor(embedding)
        except ValueError as exc:
            logger.warning("Discarding malformed descriptor: %s", exc)
            return NO_FACE

    @staticmethod
    def compare(a: np.ndarray, b: np.ndarray) -> float:
        """Euclidean distance between two descriptors."""

        first = np.asarray(a, dtype=np.float64)
        second = np.asarray(b, dtype=np.float64)
        if first.shape != second.shape:
            raise ValueError(f"Descriptor shapes differ: {first.shape} vs {second.shape}")
        return float(np.sqrt(np.sum((first - second) ** 2)))

    def match(self, live: np.ndarray, reference: np.ndarray) -> MatchResult:
        distance = self.compare(live, reference)
        return MatchResult(
            matched=is_within_distance_threshold(distance, self.threshold),
            confidence=1.0 - distance,
            distance_score=distance,
        )


_DEFAULT_MATCHER: Optional[FaceMatcher] = None
_DEFAULT_MATCHER_LOCK = threading.Lock()


def get_face_matcher() -> FaceMatcher:
    """Return the process-wide matcher so model weights load once per worker."""

    global _DEFAULT_MATCHER
    with _DEFAULT_MATCHER_LOCK:
        if _DEFAULT_MATCHER is None:
            _DEFAULT_MATCHER = FaceMatcher()
        return _DEFAULT_MATCHER


__all__ = [
    "DESCRIPTOR_LENGTH",
    "FACE_MATCH_THRESHOLD",
    "NO_FACE",
    "DeepFaceBackend",
    "EmbeddingBackend",
    "FaceMatcher",
    "MatchResult",
    "ModelSource",
    "NoFaceDetected",
    "as_descriptor",
    "deepface_home",
    "extract_all_embeddings",
    "get_face_matcher",
    "is_within_distance_threshold",
]
