"""Encrypted-value access layer: handles, proofs, grants, user decryption."""

from .base import AccessLayer, DecryptionSession, EncryptedInputBuilder, UserDecryptor
from .mock import MockAccessLayer
from .relayer import RelayerClient

__all__ = [
    "AccessLayer",
    "DecryptionSession",
    "EncryptedInputBuilder",
    "UserDecryptor",
    "MockAccessLayer",
    "RelayerClient",
]
