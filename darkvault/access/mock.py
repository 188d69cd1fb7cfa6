"""
Mock access layer — in-process stand-in for the FHE coprocessor and relayer.

Values are sealed with AES-GCM under a key derived from a 32-byte master key:
- Seal key:    HKDF(master, "darkvault-fhe-seal")    → AES-GCM(handle as AAD)
- Proof key:   HKDF(master, "darkvault-fhe-proof")   → HMAC-SHA256
- Session key: HKDF(master, "darkvault-fhe-session") → HMAC-SHA256

Proof format (hex): [count 1B][handle 32B * count][tag 32B]

Security Note:
    Never log clear values. Only log handle prefixes and identities.
"""
import os
import time
import base64
import secrets
import logging
from pathlib import Path
from typing import Optional, Union

import orjson
from cryptography.exceptions import InvalidSignature, InvalidTag
from cryptography.hazmat.primitives import hashes, hmac
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.hkdf import HKDF

from ..exceptions import (
    AccessDenied,
    InvalidCredentials,
    InvalidInputProof,
    UnknownHandle,
)
from ..models import HANDLE_SIZE, ZERO_HANDLE, EncryptedInput, normalize_address
from .base import DEFAULT_DURATION_DAYS, AccessLayer, DecryptionSession

logger = logging.getLogger("darkvault")

NONCE_SIZE = 12
TAG_SIZE = 32
KEY_LENGTH = 32
MAX_INPUT_VALUES = 255


def derive_key(seed: bytes, context: str) -> bytes:
    """Derive a 32-byte key using HKDF-SHA256."""
    hkdf = HKDF(
        algorithm=hashes.SHA256(),
        length=KEY_LENGTH,
        salt=None,
        info=context.encode("utf-8"),
    )
    return hkdf.derive(seed)


def _mac(key: bytes, data: bytes) -> bytes:
    h = hmac.HMAC(key, hashes.SHA256())
    h.update(data)
    return h.finalize()


def _verify_mac(key: bytes, data: bytes, tag: bytes) -> bool:
    h = hmac.HMAC(key, hashes.SHA256())
    h.update(data)
    try:
        h.verify(tag)
    except InvalidSignature:
        return False
    return True


def _address_bytes(address: str) -> bytes:
    return bytes.fromhex(normalize_address(address)[2:])


class MockAccessLayer(AccessLayer):
    """In-process encrypted-value runtime with optional JSON persistence."""

    def __init__(self, master_key: bytes, path: Optional[Union[str, Path]] = None):
        if len(master_key) != KEY_LENGTH:
            raise ValueError(f"master_key must be exactly {KEY_LENGTH} bytes")
        self._seal_key = derive_key(master_key, "darkvault-fhe-seal")
        self._proof_key = derive_key(master_key, "darkvault-fhe-proof")
        self._session_key = derive_key(master_key, "darkvault-fhe-session")
        self._path = Path(path) if path else None
        self._sealed: dict[str, bytes] = {}  # handle -> nonce + ciphertext
        self._bindings: dict[str, str] = {}  # handle -> contract
        self._acl: dict[str, set[str]] = {}  # handle -> identities
        if self._path is not None and self._path.exists():
            self._load()

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def _load(self) -> None:
        data = orjson.loads(self._path.read_bytes())
        self._sealed = {
            h: base64.b64decode(v) for h, v in data.get("sealed", {}).items()
        }
        self._bindings = dict(data.get("bindings", {}))
        self._acl = {h: set(ids) for h, ids in data.get("acl", {}).items()}
        logger.debug(
            "Access layer state loaded: %d handle(s) from %s",
            len(self._sealed), self._path,
        )

    def _persist(self) -> None:
        # Blocking write on the loop thread; state files are small and local.
        if self._path is None:
            return
        payload = {
            "sealed": {
                h: base64.b64encode(v).decode("ascii")
                for h, v in self._sealed.items()
            },
            "bindings": self._bindings,
            "acl": {h: sorted(ids) for h, ids in self._acl.items()},
        }
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self._path.with_suffix(".tmp")
        tmp.write_bytes(orjson.dumps(payload, option=orjson.OPT_INDENT_2))
        os.replace(tmp, self._path)

    # ------------------------------------------------------------------
    # Sealing
    # ------------------------------------------------------------------

    def _seal(self, handle: str, value: str) -> bytes:
        nonce = os.urandom(NONCE_SIZE)
        ct = AESGCM(self._seal_key).encrypt(
            nonce, value.encode("utf-8"), bytes.fromhex(handle[2:]),
        )
        return nonce + ct

    def _unseal(self, handle: str) -> str:
        blob = self._sealed[handle]
        try:
            clear = AESGCM(self._seal_key).decrypt(
                blob[:NONCE_SIZE], blob[NONCE_SIZE:], bytes.fromhex(handle[2:]),
            )
        except InvalidTag as err:
            raise UnknownHandle(
                f"Handle {handle[:10]}… cannot be opened with this master key"
            ) from err
        return clear.decode("utf-8")

    def _require_known(self, handle: str) -> None:
        if handle == ZERO_HANDLE or handle not in self._sealed:
            raise UnknownHandle(f"Unknown encrypted handle {str(handle)[:10]}…")

    # ------------------------------------------------------------------
    # Proofs
    # ------------------------------------------------------------------

    def _proof_body(self, contract: str, user: str, handles: list[str]) -> bytes:
        return (
            _address_bytes(contract)
            + _address_bytes(user)
            + bytes([len(handles)])
            + b"".join(bytes.fromhex(h[2:]) for h in handles)
        )

    def _parse_proof(self, proof: str) -> tuple[list[str], bytes]:
        try:
            raw = bytes.fromhex(proof[2:] if proof.startswith("0x") else proof)
        except (ValueError, AttributeError) as err:
            raise InvalidInputProof("Input proof is not valid hex") from err
        if len(raw) < 1 + TAG_SIZE:
            raise InvalidInputProof("Input proof is too short")
        count = raw[0]
        expected = 1 + count * HANDLE_SIZE + TAG_SIZE
        if count == 0 or len(raw) != expected:
            raise InvalidInputProof(
                f"Input proof length {len(raw)} does not match {count} handle(s)"
            )
        handles = [
            "0x" + raw[1 + i * HANDLE_SIZE:1 + (i + 1) * HANDLE_SIZE].hex()
            for i in range(count)
        ]
        return handles, raw[-TAG_SIZE:]

    # ------------------------------------------------------------------
    # AccessLayer API
    # ------------------------------------------------------------------

    async def encrypt_values(
        self, contract: str, user: str, values: list[str]
    ) -> EncryptedInput:
        contract = normalize_address(contract)
        user = normalize_address(user)
        if len(values) > MAX_INPUT_VALUES:
            raise ValueError(f"At most {MAX_INPUT_VALUES} values per input")
        handles = []
        for value in values:
            handle = "0x" + secrets.token_hex(HANDLE_SIZE)
            self._sealed[handle] = self._seal(handle, value)
            self._bindings[handle] = contract
            self._acl.setdefault(handle, set())
            handles.append(handle)
        tag = _mac(self._proof_key, self._proof_body(contract, user, handles))
        proof = bytes([len(handles)]) + b"".join(
            bytes.fromhex(h[2:]) for h in handles
        ) + tag
        self._persist()
        logger.debug(
            "Encrypted %d value(s) for contract=%s user=%s", len(handles), contract, user,
        )
        return EncryptedInput(handles=handles, input_proof="0x" + proof.hex())

    async def validate(self, handle: str, proof: str, *, contract: str, user: str) -> str:
        handles, tag = self._parse_proof(proof)
        if not _verify_mac(
            self._proof_key, self._proof_body(contract, user, handles), tag,
        ):
            raise InvalidInputProof(
                "Input proof does not match the contract/user context"
            )
        if handle not in handles:
            raise InvalidInputProof("Handle is not covered by the input proof")
        self._require_known(handle)
        if self._bindings.get(handle) != normalize_address(contract):
            raise InvalidInputProof("Handle was encrypted for another contract")
        return handle

    async def grant_access(self, handle: str, identity: str) -> None:
        self._require_known(handle)
        identity = normalize_address(identity)
        granted = self._acl.setdefault(handle, set())
        if identity not in granted:
            granted.add(identity)
            self._persist()
            logger.debug("Granted %s on handle %s…", identity, handle[:10])

    async def is_allowed(self, handle: str, identity: str) -> bool:
        return normalize_address(identity) in self._acl.get(handle, set())

    def create_decryption_session(
        self,
        user: str,
        contract_addresses: list[str],
        duration_days: int = DEFAULT_DURATION_DAYS,
        start_timestamp: Optional[int] = None,
    ) -> DecryptionSession:
        """Issue signed credentials for a user-decryption request."""
        session = DecryptionSession(
            user=normalize_address(user),
            public_key="0x" + secrets.token_hex(32),
            contract_addresses=[normalize_address(c) for c in contract_addresses],
            start_timestamp=int(time.time()) if start_timestamp is None else start_timestamp,
            duration_days=duration_days,
        )
        signature = _mac(self._session_key, session.signing_payload())
        return session.model_copy(update={"signature": signature.hex()})

    def _check_credentials(self, requester: str, credentials: DecryptionSession) -> None:
        try:
            signature = bytes.fromhex(credentials.signature.removeprefix("0x"))
        except ValueError as err:
            raise InvalidCredentials("Session signature is not valid hex") from err
        if not _verify_mac(self._session_key, credentials.signing_payload(), signature):
            raise InvalidCredentials("Session signature does not verify")
        if credentials.user != requester:
            raise InvalidCredentials("Session was issued to another identity")
        if credentials.is_expired():
            raise InvalidCredentials("Session is expired or not yet valid")

    async def request_user_decryption(
        self, handle: str, requester: str, credentials: DecryptionSession
    ) -> str:
        requester = normalize_address(requester)
        self._require_known(handle)
        self._check_credentials(requester, credentials)
        contract = self._bindings[handle]
        if contract not in credentials.contract_addresses:
            raise InvalidCredentials(
                f"Session does not cover contract {contract}"
            )
        if not await self.is_allowed(handle, requester):
            raise AccessDenied(f"{requester} is not allowed to decrypt this handle")
        if not await self.is_allowed(handle, contract):
            raise AccessDenied(f"Contract {contract} is not allowed on this handle")
        logger.debug("User decryption for %s on handle %s…", requester, handle[:10])
        return self._unseal(handle)
