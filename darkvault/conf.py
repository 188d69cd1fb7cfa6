"""
DarkVault Configuration — environment loading and validated settings.

Reads settings from environment variables:
    DARKVAULT_HOME = <state directory>           (default ~/.darkvault)
    DARKVAULT_STORAGE = file | memory | postgres (default file)
    DARKVAULT_DSN = <postgres dsn>
    DARKVAULT_RELAYER_URL = <relayer base url>
    DARKVAULT_DECRYPT_DAYS = <integer>           (default 3)
    DARKVAULT_ACCOUNT = <0x address>
    DARKVAULT_FHE_KEY = <base64-encoded 32-byte key>

Security Note:
    Never log key material. Only log key lengths and paths.
"""
import os
import base64
import secrets
import logging
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from .models import normalize_address

logger = logging.getLogger("darkvault")

FHE_KEY_LENGTH = 32
DEFAULT_HOME = Path("~/.darkvault")


def load_fhe_key() -> Optional[bytes]:
    """Load the access-layer master key from DARKVAULT_FHE_KEY.

    Returns:
        Raw 32-byte key, or None when the variable is not set.

    Raises:
        ValueError: If the key does not decode to exactly 32 bytes.
    """
    raw = os.environ.get("DARKVAULT_FHE_KEY")
    if not raw:
        return None
    key_bytes = base64.b64decode(raw)
    if len(key_bytes) != FHE_KEY_LENGTH:
        raise ValueError(
            f"DARKVAULT_FHE_KEY must decode to exactly {FHE_KEY_LENGTH} bytes, "
            f"got {len(key_bytes)}"
        )
    logger.debug("Loaded access-layer master key from environment")
    return key_bytes


def generate_fhe_key() -> str:
    """Generate a random 32-byte master key and return as base64 string."""
    return base64.b64encode(secrets.token_bytes(FHE_KEY_LENGTH)).decode("ascii")


class VaultConfig(BaseModel):
    """Validated DarkVault configuration."""

    home: Path = Field(default=DEFAULT_HOME)
    storage_backend: str = Field(default="file")
    dsn: Optional[str] = None
    relayer_url: Optional[str] = None
    decrypt_duration_days: int = Field(default=3, ge=1, le=365)
    account: Optional[str] = None
    fhe_key: Optional[bytes] = None

    model_config = {"arbitrary_types_allowed": True}

    @field_validator("home")
    @classmethod
    def expand_home(cls, v: Path) -> Path:
        return Path(v).expanduser()

    @field_validator("storage_backend")
    @classmethod
    def validate_backend(cls, v: str) -> str:
        """Validate storage backend is supported."""
        v = v.lower()
        if v not in ("file", "memory", "postgres"):
            raise ValueError(f"Unsupported storage backend: {v}")
        return v

    @field_validator("account")
    @classmethod
    def validate_account(cls, v: Optional[str]) -> Optional[str]:
        return normalize_address(v) if v else None

    @field_validator("fhe_key")
    @classmethod
    def validate_fhe_key(cls, v: Optional[bytes]) -> Optional[bytes]:
        if v is not None and len(v) != FHE_KEY_LENGTH:
            raise ValueError(f"fhe_key must be exactly {FHE_KEY_LENGTH} bytes")
        return v

    @model_validator(mode="after")
    def validate_dsn_present(self) -> "VaultConfig":
        """The postgres backend needs a DSN."""
        if self.storage_backend == "postgres" and not self.dsn:
            raise ValueError("DARKVAULT_DSN is required for the postgres backend")
        return self

    @property
    def deployment_file(self) -> Path:
        return self.home / "deployment.json"

    @property
    def ledger_file(self) -> Path:
        return self.home / "ledger.json"

    @property
    def access_file(self) -> Path:
        return self.home / "access.json"

    @classmethod
    def from_env(cls, **overrides) -> "VaultConfig":
        """Create VaultConfig by loading values from environment.

        Keyword overrides that are not None take precedence over the
        environment (used by CLI options).
        """
        values = {
            "home": os.environ.get("DARKVAULT_HOME", str(DEFAULT_HOME)),
            "storage_backend": os.environ.get("DARKVAULT_STORAGE", "file"),
            "dsn": os.environ.get("DARKVAULT_DSN") or None,
            "relayer_url": os.environ.get("DARKVAULT_RELAYER_URL") or None,
            "decrypt_duration_days": int(os.environ.get("DARKVAULT_DECRYPT_DAYS", "3")),
            "account": os.environ.get("DARKVAULT_ACCOUNT") or None,
            "fhe_key": load_fhe_key(),
        }
        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)
