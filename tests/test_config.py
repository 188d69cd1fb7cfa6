"""Tests for VaultConfig and key loading."""
import base64

import pytest
from pydantic import ValidationError

from darkvault.conf import VaultConfig, generate_fhe_key, load_fhe_key


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in (
        "DARKVAULT_HOME", "DARKVAULT_STORAGE", "DARKVAULT_DSN",
        "DARKVAULT_RELAYER_URL", "DARKVAULT_DECRYPT_DAYS",
        "DARKVAULT_ACCOUNT", "DARKVAULT_FHE_KEY",
    ):
        monkeypatch.delenv(name, raising=False)


class TestFheKey:
    """Tests for access-layer master key loading."""

    def test_generate_is_32_bytes(self):
        assert len(base64.b64decode(generate_fhe_key())) == 32

    def test_missing_key_is_none(self):
        assert load_fhe_key() is None

    def test_load_from_env(self, monkeypatch):
        key = generate_fhe_key()
        monkeypatch.setenv("DARKVAULT_FHE_KEY", key)
        assert load_fhe_key() == base64.b64decode(key)

    def test_wrong_length_rejected(self, monkeypatch):
        monkeypatch.setenv("DARKVAULT_FHE_KEY", base64.b64encode(b"short").decode())
        with pytest.raises(ValueError):
            load_fhe_key()


class TestVaultConfig:
    """Tests for VaultConfig validation."""

    def test_defaults(self, tmp_path, monkeypatch):
        monkeypatch.setenv("DARKVAULT_HOME", str(tmp_path))
        config = VaultConfig.from_env()
        assert config.home == tmp_path
        assert config.storage_backend == "file"
        assert config.decrypt_duration_days == 3
        assert config.deployment_file == tmp_path / "deployment.json"

    def test_overrides_win(self, tmp_path, monkeypatch):
        monkeypatch.setenv("DARKVAULT_HOME", "/nowhere")
        config = VaultConfig.from_env(home=str(tmp_path), account=None)
        assert config.home == tmp_path

    def test_account_normalized(self, monkeypatch):
        monkeypatch.setenv("DARKVAULT_ACCOUNT", "0x" + "AB" * 20)
        assert VaultConfig.from_env().account == "0x" + "ab" * 20

    def test_invalid_account(self):
        with pytest.raises(ValidationError):
            VaultConfig(account="bob")

    def test_unknown_backend(self):
        with pytest.raises(ValidationError):
            VaultConfig(storage_backend="sqlite")

    def test_postgres_needs_dsn(self):
        with pytest.raises(ValidationError):
            VaultConfig(storage_backend="postgres")
        config = VaultConfig(storage_backend="POSTGRES", dsn="postgres://localhost/dv")
        assert config.storage_backend == "postgres"

    def test_decrypt_days_bounds(self):
        with pytest.raises(ValidationError):
            VaultConfig(decrypt_duration_days=0)
