"""
In-process vault storage, optionally snapshotted to a JSON file.
"""
import os
import asyncio
import logging
from collections import defaultdict
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncIterator, Optional, Union

import orjson

from ..models import Vault
from .base import StorageTransaction, VaultStorage

logger = logging.getLogger("darkvault")


class MemoryTransaction(StorageTransaction):
    """Stages changes on a private copy of the vault."""

    def __init__(self, vault: Vault):
        super().__init__(vault.owner)
        self.vault = vault

    @property
    def initialized(self) -> bool:
        return self.vault.initialized

    @property
    def encrypted_key(self) -> str:
        return self.vault.encrypted_key

    @property
    def secret_count(self) -> int:
        return self.vault.secret_count

    async def write_key(self, handle: str) -> None:
        self.vault.encrypted_key = handle
        self.vault.initialized = True

    async def append_ciphertext(self, ciphertext: str) -> int:
        self.vault.ciphertexts.append(ciphertext)
        return len(self.vault.ciphertexts) - 1


class MemoryStorage(VaultStorage):
    """Dict-backed storage with one asyncio.Lock per owner."""

    def __init__(self):
        self._vaults: dict[str, Vault] = {}
        self._locks: defaultdict[str, asyncio.Lock] = defaultdict(asyncio.Lock)

    async def get(self, owner: str) -> Vault:
        vault = self._vaults.get(owner)
        if vault is None:
            return Vault(owner=owner)
        return vault.model_copy(deep=True)

    async def count(self, owner: str) -> int:
        vault = self._vaults.get(owner)
        return vault.secret_count if vault else 0

    async def ciphertext_at(self, owner: str, index: int) -> Optional[str]:
        vault = self._vaults.get(owner)
        if vault is None or not 0 <= index < vault.secret_count:
            return None
        return vault.ciphertexts[index]

    @asynccontextmanager
    async def transaction(self, owner: str) -> AsyncIterator[MemoryTransaction]:
        async with self._locks[owner]:
            current = self._vaults.get(owner) or Vault(owner=owner)
            tx = MemoryTransaction(current.model_copy(deep=True))
            yield tx
            # reached only when the block raised nothing
            candidate = dict(self._vaults)
            candidate[owner] = tx.vault
            self._commit(candidate)
            self._vaults = candidate

    def _commit(self, vaults: dict[str, Vault]) -> None:
        """Persist ``vaults`` before they become visible; raise to abort."""

    def owners(self) -> list[str]:
        return sorted(self._vaults)


class FileStorage(MemoryStorage):
    """MemoryStorage that rewrites a JSON snapshot after every commit."""

    def __init__(self, path: Union[str, Path]):
        super().__init__()
        self._path = Path(path)

    async def open(self) -> None:
        if not self._path.exists():
            return
        data = orjson.loads(self._path.read_bytes())
        self._vaults = {
            owner: Vault.model_validate(record)
            for owner, record in data.get("vaults", {}).items()
        }
        logger.debug(
            "Loaded %d vault(s) from %s", len(self._vaults), self._path,
        )

    def _commit(self, vaults: dict[str, Vault]) -> None:
        # Blocking write: no await may sit between building the candidate
        # mapping and swapping it in.
        payload = {
            "vaults": {
                owner: v.model_dump() for owner, v in vaults.items()
            },
        }
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self._path.with_suffix(".tmp")
        tmp.write_bytes(orjson.dumps(payload, option=orjson.OPT_INDENT_2))
        os.replace(tmp, self._path)
