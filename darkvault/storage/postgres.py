"""
PostgreSQL vault storage (asyncpg).

Per-owner serialization uses a row lock: every transaction upserts the
owner's row and re-reads it with ``FOR UPDATE`` before any write.
"""
import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Optional

import asyncpg

from ..models import ZERO_HANDLE, Vault
from .base import StorageTransaction, VaultStorage

logger = logging.getLogger("darkvault")

# secret indices are BIGINT; larger values cannot be bound as parameters
_BIGINT_LIMIT = 2 ** 63

# ---------------------------------------------------------------------------
# SQL statements
# ---------------------------------------------------------------------------

_CREATE_SCHEMA = """
CREATE SCHEMA IF NOT EXISTS darkvault;
CREATE TABLE IF NOT EXISTS darkvault.vaults (
    owner TEXT PRIMARY KEY,
    encrypted_key TEXT NOT NULL,
    initialized BOOLEAN NOT NULL DEFAULT FALSE,
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
);
CREATE TABLE IF NOT EXISTS darkvault.vault_secrets (
    owner TEXT NOT NULL REFERENCES darkvault.vaults (owner),
    idx BIGINT NOT NULL,
    ciphertext TEXT NOT NULL,
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    PRIMARY KEY (owner, idx)
);
"""

_ENSURE_ROW = """
INSERT INTO darkvault.vaults (owner, encrypted_key)
VALUES ($1, $2)
ON CONFLICT (owner) DO NOTHING
"""

_LOCK_ROW = """
SELECT encrypted_key, initialized
FROM darkvault.vaults
WHERE owner = $1
FOR UPDATE
"""

_WRITE_KEY = """
UPDATE darkvault.vaults
SET encrypted_key = $2, initialized = TRUE, updated_at = NOW()
WHERE owner = $1
"""

_INSERT_SECRET = """
INSERT INTO darkvault.vault_secrets (owner, idx, ciphertext)
VALUES ($1, $2, $3)
"""

_SELECT_VAULT = """
SELECT encrypted_key, initialized
FROM darkvault.vaults
WHERE owner = $1
"""

_SELECT_SECRETS = """
SELECT ciphertext
FROM darkvault.vault_secrets
WHERE owner = $1
ORDER BY idx
"""

_COUNT_SECRETS = """
SELECT COUNT(*) FROM darkvault.vault_secrets WHERE owner = $1
"""

_SELECT_SECRET = """
SELECT ciphertext
FROM darkvault.vault_secrets
WHERE owner = $1 AND idx = $2
"""


class PostgresTransaction(StorageTransaction):
    """Writes go straight to the connection inside the open transaction."""

    def __init__(self, owner: str, conn: Any, row: Any, secret_count: int):
        super().__init__(owner)
        self._conn = conn
        self._encrypted_key = row["encrypted_key"]
        self._initialized = row["initialized"]
        self._secret_count = secret_count

    @property
    def initialized(self) -> bool:
        return self._initialized

    @property
    def encrypted_key(self) -> str:
        return self._encrypted_key

    @property
    def secret_count(self) -> int:
        return self._secret_count

    async def write_key(self, handle: str) -> None:
        await self._conn.execute(_WRITE_KEY, self.owner, handle)
        self._encrypted_key = handle
        self._initialized = True

    async def append_ciphertext(self, ciphertext: str) -> int:
        index = self._secret_count
        await self._conn.execute(_INSERT_SECRET, self.owner, index, ciphertext)
        self._secret_count += 1
        return index


class PostgresStorage(VaultStorage):
    """Vault storage on an asyncpg-compatible connection pool.

    Args:
        db_pool: asyncpg-compatible pool; created from ``dsn`` on ``open()``
            when not given.
        dsn: PostgreSQL connection string.
    """

    def __init__(self, db_pool: Any = None, dsn: Optional[str] = None):
        if db_pool is None and not dsn:
            raise ValueError("PostgresStorage needs a pool or a DSN")
        self._db = db_pool
        self._dsn = dsn
        self._owns_pool = db_pool is None

    async def open(self) -> None:
        if self._db is None:
            self._db = await asyncpg.create_pool(dsn=self._dsn)
            logger.info("Connected vault storage pool")
        await self.initialize()

    async def close(self) -> None:
        if self._owns_pool and self._db is not None:
            await self._db.close()
            self._db = None

    async def initialize(self) -> None:
        """Create the darkvault schema and tables if missing."""
        async with self._db.acquire() as conn:
            await conn.execute(_CREATE_SCHEMA)

    async def get(self, owner: str) -> Vault:
        async with self._db.acquire() as conn:
            row = await conn.fetchrow(_SELECT_VAULT, owner)
            if row is None:
                return Vault(owner=owner)
            rows = await conn.fetch(_SELECT_SECRETS, owner)
        return Vault(
            owner=owner,
            encrypted_key=row["encrypted_key"],
            initialized=row["initialized"],
            ciphertexts=[r["ciphertext"] for r in rows],
        )

    async def count(self, owner: str) -> int:
        async with self._db.acquire() as conn:
            value = await conn.fetchval(_COUNT_SECRETS, owner)
        return int(value or 0)

    async def ciphertext_at(self, owner: str, index: int) -> Optional[str]:
        if not 0 <= index < _BIGINT_LIMIT:
            return None
        async with self._db.acquire() as conn:
            return await conn.fetchval(_SELECT_SECRET, owner, index)

    @asynccontextmanager
    async def transaction(self, owner: str) -> AsyncIterator[PostgresTransaction]:
        async with self._db.acquire() as conn:
            tx = conn.transaction()
            await tx.start()
            try:
                await conn.execute(_ENSURE_ROW, owner, ZERO_HANDLE)
                row = await conn.fetchrow(_LOCK_ROW, owner)
                count = await conn.fetchval(_COUNT_SECRETS, owner)
                yield PostgresTransaction(owner, conn, row, int(count or 0))
            except BaseException:
                await tx.rollback()
                raise
            else:
                await tx.commit()
