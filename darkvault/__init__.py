"""DarkVault — encrypted vaults with FHE-protected keys.

Security Note (Threat Model):
    The ledger stores only opaque handles and client-side ciphertexts.
    Anyone may read them; only identities granted on a key handle can
    have it decrypted. Once a client recovers a vault key it lives in
    process memory for the lifetime of that ``VaultClient``.
"""

from .version import __version__
from .exceptions import (
    DarkVaultError,
    VaultAlreadyExists,
    VaultMissing,
    SecretIndexOutOfBounds,
    InvalidInputProof,
    AccessDenied,
    InvalidCredentials,
    CiphertextFormatError,
    DecryptionError,
)
from .models import CallerContext, Vault, ZERO_HANDLE
from .ledger import VaultLedger
from .conf import VaultConfig

__all__ = [
    "__version__",
    "VaultLedger",
    "VaultConfig",
    "CallerContext",
    "Vault",
    "ZERO_HANDLE",
    "DarkVaultError",
    "VaultAlreadyExists",
    "VaultMissing",
    "SecretIndexOutOfBounds",
    "InvalidInputProof",
    "AccessDenied",
    "InvalidCredentials",
    "CiphertextFormatError",
    "DecryptionError",
]
