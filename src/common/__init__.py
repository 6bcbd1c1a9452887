"""Shared helpers used by both Django apps."""

from .crypto import DescriptorEncryption, InvalidToken, decrypt_descriptor, encrypt_descriptor

__all__ = [
    "DescriptorEncryption",
    "InvalidToken",
    "decrypt_descriptor",
    "encrypt_descriptor",
]
