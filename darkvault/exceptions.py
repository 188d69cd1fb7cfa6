"""
DarkVault errors.

Every error carries a stable ``code`` so callers (CLI, UI glue) can branch
on the failure category, e.g. "create instead of rotate" on ``vault_missing``.
"""
from typing import Optional


class DarkVaultError(Exception):
    """Base class for all DarkVault errors."""

    code: str = "darkvault_error"

    def __init__(self, message: Optional[str] = None) -> None:
        super().__init__(message or self.code)
        self.message = message or self.code


# ---------------------------------------------------------------------------
# Ledger state errors
# ---------------------------------------------------------------------------

class VaultError(DarkVaultError):
    """Base class for vault state errors raised by the ledger."""

    code = "vault_error"

    def __init__(self, owner: str, message: Optional[str] = None) -> None:
        super().__init__(message)
        self.owner = owner


class VaultAlreadyExists(VaultError):
    """The owner already has an initialized vault."""

    code = "vault_already_exists"

    def __init__(self, owner: str) -> None:
        super().__init__(owner, f"Vault already exists for {owner}")


class VaultMissing(VaultError):
    """The owner has no initialized vault."""

    code = "vault_missing"

    def __init__(self, owner: str) -> None:
        super().__init__(owner, f"No vault found for {owner}")


class SecretIndexOutOfBounds(VaultError):
    """Requested ciphertext index is outside ``[0, count)``."""

    code = "secret_index_out_of_bounds"

    def __init__(self, owner: str, index: int, count: int) -> None:
        super().__init__(
            owner,
            f"Secret index {index} out of bounds for {owner} "
            f"({count} secret(s) stored)",
        )
        self.index = index
        self.count = count


# ---------------------------------------------------------------------------
# Access layer errors
# ---------------------------------------------------------------------------

class AccessLayerError(DarkVaultError):
    code = "access_layer_error"


class InvalidInputProof(AccessLayerError):
    """Encrypted input and proof do not match (or were bound elsewhere)."""

    code = "invalid_input_proof"


class UnknownHandle(AccessLayerError):
    code = "unknown_handle"


class AccessDenied(AccessLayerError):
    """Requester (or the handle's contract) holds no grant on the handle."""

    code = "access_denied"


class InvalidCredentials(AccessLayerError):
    """Decryption session credentials are forged, expired or mismatched."""

    code = "invalid_credentials"


class RelayerError(AccessLayerError):
    code = "relayer_error"

    def __init__(self, message: str, status: Optional[int] = None) -> None:
        super().__init__(message)
        self.status = status


# ---------------------------------------------------------------------------
# Client cipher errors
# ---------------------------------------------------------------------------

class CipherError(DarkVaultError):
    code = "cipher_error"


class CiphertextFormatError(CipherError, ValueError):
    """Encoded ciphertext envelope is malformed or has an unknown version."""

    code = "unsupported_ciphertext_format"


class DecryptionError(CipherError):
    """Authenticated decryption failed (wrong key or tampered payload)."""

    code = "decryption_failed"


class VaultLocked(CipherError):
    """The vault key has not been decrypted for this client yet."""

    code = "vault_locked"


# ---------------------------------------------------------------------------
# Misc
# ---------------------------------------------------------------------------

class InvalidAddress(DarkVaultError, ValueError):
    code = "invalid_address"


class DeploymentError(DarkVaultError):
    code = "deployment_error"
