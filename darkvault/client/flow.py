"""
VaultClient — the owner-side key and secret flow.

Generates the vault key, submits it encrypted, recovers it through user
decryption and encrypts/decrypts secrets locally. The clear vault key only
lives in this object.
"""
import logging
from typing import Optional

from ..access.base import AccessLayer, DecryptionSession, UserDecryptor
from ..exceptions import CipherError, VaultLocked
from ..ledger import VaultLedger
from ..models import ZERO_HANDLE, CallerContext, normalize_address
from .cipher import decrypt_secret, encrypt_secret, generate_vault_key

logger = logging.getLogger("darkvault")


class VaultClient:
    """Client bound to one ledger, one access layer and one caller.

    Args:
        ledger: The vault ledger.
        access: Access layer used to encrypt key inputs.
        caller: Identity acting as vault owner.
        decryptor: User-decryption provider (defaults to ``access``), e.g.
            a ``RelayerClient``.
    """

    def __init__(
        self,
        ledger: VaultLedger,
        access: AccessLayer,
        caller: CallerContext,
        decryptor: Optional[UserDecryptor] = None,
    ):
        self._ledger = ledger
        self._access = access
        self._caller = caller
        self._decryptor = decryptor or access
        self._vault_key: Optional[str] = None

    @property
    def owner(self) -> str:
        return self._caller.identity

    @property
    def vault_key(self) -> Optional[str]:
        return self._vault_key

    @property
    def unlocked(self) -> bool:
        return self._vault_key is not None

    def lock(self) -> None:
        """Forget the clear vault key."""
        self._vault_key = None

    async def _encrypt_key(self, key: Optional[str]) -> tuple[str, str, str]:
        key = normalize_address(key) if key else generate_vault_key()
        encrypted = await (
            self._access.create_encrypted_input(self._ledger.address, self.owner)
            .add_address(key)
            .encrypt()
        )
        return key, encrypted.handles[0], encrypted.input_proof

    async def create_vault(self, key: Optional[str] = None) -> str:
        """Create the caller's vault and return the clear vault key."""
        key, handle, proof = await self._encrypt_key(key)
        await self._ledger.create_vault(self._caller, handle, proof)
        self._vault_key = key
        return key

    async def rotate_key(self, key: Optional[str] = None) -> str:
        """Rotate to a new vault key and return it.

        Secrets stored under the previous key stay encrypted with it.
        """
        key, handle, proof = await self._encrypt_key(key)
        await self._ledger.rotate_vault_key(self._caller, handle, proof)
        self._vault_key = key
        return key

    async def decrypt_key(
        self, credentials: DecryptionSession, owner: Optional[str] = None
    ) -> Optional[str]:
        """Recover the vault key through user decryption.

        Returns:
            The clear key, or None when the vault is not initialized.
        """
        owner = normalize_address(owner) if owner else self.owner
        handle = await self._ledger.get_vault_key(owner)
        if handle == ZERO_HANDLE:
            return None
        key = normalize_address(
            await self._decryptor.request_user_decryption(
                handle, self.owner, credentials,
            )
        )
        if owner == self.owner:
            self._vault_key = key
        return key

    async def store_secret(self, plaintext: str) -> int:
        """Encrypt plaintext with the held key and append it.

        Raises:
            VaultLocked: If the vault key has not been recovered.
            ValueError: If plaintext is blank.
        """
        if self._vault_key is None:
            raise VaultLocked("Decrypt the vault key before storing secrets")
        if not plaintext or not plaintext.strip():
            raise ValueError("Secret must not be empty")
        ciphertext = encrypt_secret(self._vault_key, plaintext.strip())
        return await self._ledger.store_secret(self._caller, ciphertext)

    async def list_ciphertexts(self, owner: Optional[str] = None) -> list[str]:
        owner = normalize_address(owner) if owner else self.owner
        count = await self._ledger.get_secret_count(owner)
        return [await self._ledger.get_secret(owner, i) for i in range(count)]

    async def reveal_secrets(
        self, owner: Optional[str] = None, key: Optional[str] = None
    ) -> list[Optional[str]]:
        """Decrypt every stored ciphertext; undecryptable entries are None."""
        key = key or self._vault_key
        if key is None:
            raise VaultLocked("Decrypt the vault key before revealing secrets")
        results: list[Optional[str]] = []
        for index, ciphertext in enumerate(await self.list_ciphertexts(owner)):
            try:
                results.append(decrypt_secret(key, ciphertext))
            except CipherError as err:
                logger.warning("Secret %d could not be decrypted: %s", index, err.code)
                results.append(None)
        return results
