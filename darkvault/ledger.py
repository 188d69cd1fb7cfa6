"""
VaultLedger — per-owner encrypted vaults.

Provides the ledger API:
- ``create_vault(caller, handle, proof)`` — one-time vault initialization
- ``rotate_vault_key(caller, handle, proof)`` — replace the encrypted key
- ``store_secret(caller, ciphertext)`` — append a client-side ciphertext
- ``has_vault`` / ``get_vault_key`` / ``get_secret_count`` / ``get_secret``

Mutators act on ``caller.identity`` only; read accessors take any owner.

Security Note:
    The ledger never sees plaintext. Only log owners, indices and handle
    prefixes.
"""
import inspect
import logging
from typing import Any, Callable, Optional

from .access.base import AccessLayer
from .exceptions import SecretIndexOutOfBounds, VaultAlreadyExists, VaultMissing
from .models import (
    CallerContext,
    SecretStored,
    VaultCreated,
    VaultEvent,
    VaultKeyRotated,
    generate_address,
    normalize_address,
)
from .storage.base import StorageTransaction, VaultStorage

logger = logging.getLogger("darkvault")

EventListener = Callable[[VaultEvent], Any]


class VaultLedger:
    """Owner → Vault ledger enforcing lifecycle and grant propagation.

    Args:
        storage: Persistent owner → Vault mapping.
        access: Encrypted-value access layer used to validate and grant handles.
        address: The ledger's own identity; generated when omitted.
    """

    def __init__(
        self,
        storage: VaultStorage,
        access: AccessLayer,
        address: Optional[str] = None,
    ):
        self._storage = storage
        self._access = access
        self.address = normalize_address(address) if address else generate_address()
        self._listeners: list[EventListener] = []
        self._events: list[VaultEvent] = []
        self._sequence = 0

    def __repr__(self) -> str:
        return f"<VaultLedger address={self.address}>"

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------

    @property
    def events(self) -> list[VaultEvent]:
        return list(self._events)

    def subscribe(self, listener: EventListener) -> None:
        """Register a sync or async callable invoked for every event."""
        self._listeners.append(listener)

    async def _emit(self, event: VaultEvent) -> None:
        """Record an already-committed event and notify listeners.

        Listener failures are logged and never fail the mutation that
        produced the event. Sequence numbers follow emission order; with
        a storage backend that releases its owner lock before emission
        (PostgresStorage), concurrent calls for one owner may emit out of
        commit order, so listeners should key on ``SecretStored.index``.
        """
        self._sequence += 1
        event.sequence = self._sequence
        self._events.append(event)
        for listener in self._listeners:
            try:
                result = listener(event)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception(
                    "Event listener %r failed on %s #%d",
                    listener, event.name, event.sequence,
                )

    # ------------------------------------------------------------------
    # Key handling
    # ------------------------------------------------------------------

    async def _install_key(
        self, tx: StorageTransaction, owner: str, handle: str, proof: str
    ) -> None:
        validated = await self._access.validate(
            handle, proof, contract=self.address, user=owner,
        )
        await tx.write_key(validated)
        await self._access.grant_self_access(validated, self.address)
        await self._access.grant_access(validated, owner)

    # ------------------------------------------------------------------
    # Mutators
    # ------------------------------------------------------------------

    async def create_vault(self, caller: CallerContext, encrypted_key: str, proof: str) -> None:
        """Create the caller's vault from an encrypted key and its proof.

        Raises:
            VaultAlreadyExists: If the caller already has a vault.
            InvalidInputProof: If the access layer rejects the proof.
        """
        owner = caller.identity
        async with self._storage.transaction(owner) as tx:
            if tx.initialized:
                raise VaultAlreadyExists(owner)
            await self._install_key(tx, owner, encrypted_key, proof)
        logger.info("Vault created: owner=%s", owner)
        await self._emit(VaultCreated(owner=owner))

    async def rotate_vault_key(self, caller: CallerContext, encrypted_key: str, proof: str) -> None:
        """Replace the caller's encrypted key.

        Grants on the previous handle are left as they were.

        Raises:
            VaultMissing: If the caller has no vault.
            InvalidInputProof: If the access layer rejects the proof.
        """
        owner = caller.identity
        async with self._storage.transaction(owner) as tx:
            if not tx.initialized:
                raise VaultMissing(owner)
            await self._install_key(tx, owner, encrypted_key, proof)
        logger.info("Vault key rotated: owner=%s", owner)
        await self._emit(VaultKeyRotated(owner=owner))

    async def store_secret(self, caller: CallerContext, ciphertext: str) -> int:
        """Append a ciphertext to the caller's vault and return its index.

        Raises:
            VaultMissing: If the caller has no vault.
        """
        if not isinstance(ciphertext, str):
            raise TypeError("ciphertext must be a string")
        owner = caller.identity
        async with self._storage.transaction(owner) as tx:
            if not tx.initialized:
                raise VaultMissing(owner)
            index = await tx.append_ciphertext(ciphertext)
        logger.debug("Secret stored: owner=%s index=%d", owner, index)
        await self._emit(SecretStored(owner=owner, index=index))
        return index

    # ------------------------------------------------------------------
    # Read accessors
    # ------------------------------------------------------------------

    async def has_vault(self, owner: str) -> bool:
        vault = await self._storage.get(normalize_address(owner))
        return vault.initialized

    async def get_vault_key(self, owner: str) -> str:
        """Return the owner's encrypted key handle (zero handle if none)."""
        vault = await self._storage.get(normalize_address(owner))
        return vault.encrypted_key

    async def get_secret_count(self, owner: str) -> int:
        return await self._storage.count(normalize_address(owner))

    async def get_secret(self, owner: str, index: int) -> str:
        """Return the ciphertext stored at ``index``.

        Raises:
            SecretIndexOutOfBounds: If index is not in ``[0, count)``.
        """
        owner = normalize_address(owner)
        ciphertext = None
        if index >= 0:
            ciphertext = await self._storage.ciphertext_at(owner, index)
        if ciphertext is None:
            count = await self._storage.count(owner)
            raise SecretIndexOutOfBounds(owner, index, count)
        return ciphertext
