"""
Client cipher — local encryption of secrets with the vault key.

The vault key is an address string; its AES-256 key is SHA-256 of the
lower-cased address. Ciphertexts use a versioned envelope:

    dv1:<base64 nonce>:<base64 AES-GCM payload + tag>

Security Note:
    Never log plaintext, vault keys or derived key bytes.
"""
import os
import base64
import binascii
import hashlib

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from ..exceptions import CiphertextFormatError, DecryptionError
from ..models import generate_address, normalize_address

VERSION_TAG = "dv1"
NONCE_SIZE = 12  # 96-bit nonce
SEPARATOR = ":"


def generate_vault_key() -> str:
    """Return a fresh random vault key address."""
    return generate_address()


def derive_symmetric_key(address: str) -> bytes:
    """Derive the 32-byte AES key for a vault key address."""
    return hashlib.sha256(address.strip().lower().encode("utf-8")).digest()


def _b64decode(value: str, field: str) -> bytes:
    try:
        return base64.b64decode(value, validate=True)
    except (binascii.Error, ValueError) as err:
        raise CiphertextFormatError(f"Ciphertext {field} is not valid base64") from err


def encode(nonce: bytes, payload: bytes) -> str:
    return SEPARATOR.join((
        VERSION_TAG,
        base64.b64encode(nonce).decode("ascii"),
        base64.b64encode(payload).decode("ascii"),
    ))


def decode(value: str) -> tuple[bytes, bytes]:
    """Split an encoded ciphertext into (nonce, payload).

    Raises:
        CiphertextFormatError: unknown version tag, missing or extra fields,
            or invalid base64.
    """
    parts = value.split(SEPARATOR) if isinstance(value, str) else []
    if len(parts) != 3 or parts[0] != VERSION_TAG or not parts[1] or not parts[2]:
        raise CiphertextFormatError("Unsupported ciphertext format")
    return _b64decode(parts[1], "nonce"), _b64decode(parts[2], "payload")


def encrypt_secret(address: str, plaintext: str) -> str:
    """Encrypt plaintext with the key derived from a vault key address."""
    key = derive_symmetric_key(normalize_address(address))
    nonce = os.urandom(NONCE_SIZE)
    payload = AESGCM(key).encrypt(nonce, plaintext.encode("utf-8"), None)
    return encode(nonce, payload)


def decrypt_secret(address: str, value: str) -> str:
    """Decrypt an encoded ciphertext with the key derived from an address.

    Raises:
        CiphertextFormatError: If the envelope is malformed.
        DecryptionError: If authentication fails (wrong key or tampering).
    """
    nonce, payload = decode(value)
    if len(nonce) != NONCE_SIZE:
        raise CiphertextFormatError(
            f"Nonce must be {NONCE_SIZE} bytes, got {len(nonce)}"
        )
    key = derive_symmetric_key(normalize_address(address))
    try:
        clear = AESGCM(key).decrypt(nonce, payload, None)
    except InvalidTag as err:
        raise DecryptionError("Unable to decrypt with the current key") from err
    return clear.decode("utf-8")
