"""Fernet helpers for encrypting reference face descriptors at rest."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Union

import numpy as np
from cryptography.fernet import Fernet, InvalidToken
from django.conf import settings
from django.core.exceptions import ImproperlyConfigured

BytesLike = Union[bytes, bytearray, memoryview]


def _coerce_key_bytes(key: BytesLike | str) -> bytes:
    """Normalise the configured Fernet key to ``bytes``."""

    if isinstance(key, str):
        return key.encode()
    return bytes(key)


@dataclass(slots=True)
class _FernetWrapper:
    """Lazily instantiate a Fernet cipher using a Django setting."""

    setting_name: str
    key_override: BytesLike | str | None = None
    _cipher: Fernet | None = None

    def _resolve_key(self) -> bytes:
        key = self.key_override
        if key is None:
            key = getattr(settings, self.setting_name, None)
        if key is None:
            raise ImproperlyConfigured(f"{self.setting_name} is not configured.")

        key_bytes = _coerce_key_bytes(key)
        try:
            Fernet(key_bytes)
        except (TypeError, ValueError) as exc:
            raise ImproperlyConfigured(f"{self.setting_name} is invalid.") from exc
        return key_bytes

    def _get_cipher(self) -> Fernet:
        if self._cipher is None:
            self._cipher = Fernet(self._resolve_key())
        return self._cipher

    def encrypt(self, payload: BytesLike) -> bytes:
        if not isinstance(payload, (bytes, bytearray, memoryview)):
            raise TypeError("encrypt expects a bytes-like object")
        return self._get_cipher().encrypt(bytes(payload))

    def decrypt(self, token: BytesLike) -> bytes:
        if not isinstance(token, (bytes, bytearray, memoryview)):
            raise TypeError("decrypt expects a bytes-like object")
        return self._get_cipher().decrypt(bytes(token))


class DescriptorEncryption:
    """Encrypt and decrypt face descriptors as little-endian float64 blobs."""

    def __init__(self, key: BytesLike | str | None = None) -> None:
        self._helper = _FernetWrapper("FACE_DATA_ENCRYPTION_KEY", key_override=key)

    def encrypt_descriptor(self, descriptor: np.ndarray) -> bytes:
        if not isinstance(descriptor, np.ndarray):
            raise TypeError("encrypt_descriptor expects a numpy.ndarray")
        return self._helper.encrypt(descriptor.astype("<f8").tobytes())

    def decrypt_descriptor(self, token: BytesLike) -> np.ndarray:
        # frombuffer returns a read-only view; copy so callers own the array.
        return np.frombuffer(self._helper.decrypt(token), dtype="<f8").astype(np.float64)


_descriptor_encryption = DescriptorEncryption()


def encrypt_descriptor(descriptor: np.ndarray) -> bytes:
    """Encrypt a face descriptor with the configured face data key."""

    return _descriptor_encryption.encrypt_descriptor(descriptor)


def decrypt_descriptor(token: BytesLike) -> np.ndarray:
    """Decrypt a descriptor previously stored via :func:`encrypt_descriptor`."""

    return _descriptor_encryption.decrypt_descriptor(token)


__all__ = [
    "DescriptorEncryption",
    "InvalidToken",
    "decrypt_descriptor",
    "encrypt_descriptor",
]
