"""
Access layer ports — encrypted handles, proofs, grants and user decryption.

The vault ledger consumes this capability surface without ever looking
inside a handle. Implementations decide how values are sealed.
"""
import time
from abc import ABC, abstractmethod
from typing import Optional, Protocol

import orjson
from pydantic import BaseModel, Field

from ..models import EncryptedInput, normalize_address

SECONDS_PER_DAY = 86400
DEFAULT_DURATION_DAYS = 3


class DecryptionSession(BaseModel):
    """Credentials a requester presents for a user-decryption request."""

    user: str
    public_key: str
    contract_addresses: list[str]
    start_timestamp: int
    duration_days: int = Field(default=DEFAULT_DURATION_DAYS, ge=1)
    signature: str = ""

    @property
    def expires_at(self) -> int:
        return self.start_timestamp + self.duration_days * SECONDS_PER_DAY

    def is_expired(self, now: Optional[float] = None) -> bool:
        now = time.time() if now is None else now
        return now < self.start_timestamp or now >= self.expires_at

    def signing_payload(self) -> bytes:
        """Canonical bytes covered by the session signature."""
        return orjson.dumps(
            self.model_dump(exclude={"signature"}),
            option=orjson.OPT_SORT_KEYS,
        )


class UserDecryptor(Protocol):
    async def request_user_decryption(
        self, handle: str, requester: str, credentials: DecryptionSession
    ) -> str:
        ...


class EncryptedInputBuilder:
    """Collects clear values to be encrypted for one (contract, user) pair."""

    def __init__(self, layer: "AccessLayer", contract: str, user: str):
        self._layer = layer
        self._contract = normalize_address(contract)
        self._user = normalize_address(user)
        self._values: list[str] = []

    def add_address(self, value: str) -> "EncryptedInputBuilder":
        self._values.append(normalize_address(value))
        return self

    async def encrypt(self) -> EncryptedInput:
        if not self._values:
            raise ValueError("Encrypted input has no values")
        return await self._layer.encrypt_values(
            self._contract, self._user, list(self._values),
        )


class AccessLayer(ABC):
    """Encrypted-value access layer consumed by the vault ledger."""

    def create_encrypted_input(self, contract: str, user: str) -> EncryptedInputBuilder:
        return EncryptedInputBuilder(self, contract, user)

    @abstractmethod
    async def encrypt_values(
        self, contract: str, user: str, values: list[str]
    ) -> EncryptedInput:
        """Encrypt clear values into handles plus a proof bound to contract/user."""

    @abstractmethod
    async def validate(self, handle: str, proof: str, *, contract: str, user: str) -> str:
        """Verify a handle+proof pair and return the validated handle.

        Raises:
            InvalidInputProof: If the proof does not cover the handle or
                was produced for another contract/user.
        """

    @abstractmethod
    async def grant_access(self, handle: str, identity: str) -> None:
        """Add identity to the handle's authorized decryptors (idempotent)."""

    async def grant_self_access(self, handle: str, contract: str) -> None:
        await self.grant_access(handle, contract)

    @abstractmethod
    async def is_allowed(self, handle: str, identity: str) -> bool:
        ...

    @abstractmethod
    async def request_user_decryption(
        self, handle: str, requester: str, credentials: DecryptionSession
    ) -> str:
        """Decrypt a handle for an authorized requester.

        Raises:
            AccessDenied: requester or the handle's contract lacks a grant.
            InvalidCredentials: credentials are invalid or expired.
        """
