"""Owner-side key flow and local secret cipher."""

from .cipher import (
    decode,
    decrypt_secret,
    derive_symmetric_key,
    encode,
    encrypt_secret,
    generate_vault_key,
)
from .flow import VaultClient

__all__ = [
    "VaultClient",
    "decode",
    "decrypt_secret",
    "derive_symmetric_key",
    "encode",
    "encrypt_secret",
    "generate_vault_key",
]
