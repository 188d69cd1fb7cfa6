"""Shared fixtures for DarkVault tests."""
import os

import pytest

from darkvault.access.mock import MockAccessLayer
from darkvault.ledger import VaultLedger
from darkvault.models import CallerContext, generate_address
from darkvault.storage.memory import MemoryStorage


@pytest.fixture
def master_key():
    return os.urandom(32)


@pytest.fixture
def access(master_key):
    """Fresh in-process access layer."""
    return MockAccessLayer(master_key)


@pytest.fixture
def storage():
    return MemoryStorage()


@pytest.fixture
def ledger(storage, access):
    return VaultLedger(storage, access)


@pytest.fixture
def alice():
    return CallerContext(identity=generate_address())


@pytest.fixture
def bob():
    return CallerContext(identity=generate_address())


@pytest.fixture
def encrypt_key(access, ledger):
    """Return a helper encrypting a vault key for a caller.

    The helper returns (key, handle, proof).
    """
    async def _encrypt(caller, key=None):
        key = key or generate_address()
        encrypted = await (
            access.create_encrypted_input(ledger.address, caller.identity)
            .add_address(key)
            .encrypt()
        )
        return key, encrypted.handles[0], encrypted.input_proof
    return _encrypt
