"""
DarkVault data model — identities, vault records, encrypted inputs and events.
"""
import re
import time
import secrets
from typing import Literal

from pydantic import BaseModel, Field, field_validator

from .exceptions import InvalidAddress

_ADDRESS_PATTERN = re.compile(r"^0x[0-9a-fA-F]{40}$")
_HANDLE_PATTERN = re.compile(r"^0x[0-9a-f]{64}$")

HANDLE_SIZE = 32  # bytes32
ZERO_HANDLE = "0x" + "00" * HANDLE_SIZE


def normalize_address(value: str) -> str:
    """Validate an account-like address and return its canonical form.

    Canonical form is ``0x`` followed by 40 lower-case hex digits.

    Raises:
        InvalidAddress: If value is not a 20-byte hex address.
    """
    if not isinstance(value, str) or not _ADDRESS_PATTERN.match(value.strip()):
        raise InvalidAddress(f"Invalid address: {value!r}")
    return value.strip().lower()


def generate_address() -> str:
    """Return a random account-like address."""
    return "0x" + secrets.token_hex(20)


def is_handle(value: str) -> bool:
    return isinstance(value, str) and bool(_HANDLE_PATTERN.match(value))


class CallerContext(BaseModel):
    """Authenticated identity of the party issuing a mutating call.

    Mutating ledger operations take the acting owner from this object only.
    """

    identity: str

    model_config = {"frozen": True}

    @field_validator("identity")
    @classmethod
    def validate_identity(cls, v: str) -> str:
        return normalize_address(v)


class Vault(BaseModel):
    """Per-owner vault record."""

    owner: str
    encrypted_key: str = ZERO_HANDLE
    initialized: bool = False
    ciphertexts: list[str] = Field(default_factory=list)

    @property
    def secret_count(self) -> int:
        return len(self.ciphertexts)


class EncryptedInput(BaseModel):
    """Handles produced by the access layer plus the proof binding them."""

    handles: list[str]
    input_proof: str


# ---------------------------------------------------------------------------
# Ledger events
# ---------------------------------------------------------------------------

class VaultEvent(BaseModel):
    name: str
    owner: str
    sequence: int = 0
    timestamp: float = Field(default_factory=time.time)


class VaultCreated(VaultEvent):
    name: Literal["VaultCreated"] = "VaultCreated"


class VaultKeyRotated(VaultEvent):
    name: Literal["VaultKeyRotated"] = "VaultKeyRotated"


class SecretStored(VaultEvent):
    name: Literal["SecretStored"] = "SecretStored"
    index: int
