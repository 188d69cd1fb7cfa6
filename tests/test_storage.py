"""
Tests for vault storage backends.

Tests cover:
- MemoryStorage commit/rollback semantics
- FileStorage snapshot persistence
- PostgresStorage SQL flow against a fake asyncpg pool
"""
import copy

import pytest

from darkvault.exceptions import SecretIndexOutOfBounds
from darkvault.ledger import VaultLedger
from darkvault.models import ZERO_HANDLE, generate_address
from darkvault.storage import postgres as pg
from darkvault.storage.memory import FileStorage, MemoryStorage
from darkvault.storage.postgres import PostgresStorage


class Boom(Exception):
    pass


# --- Fake asyncpg pool ---

class FakeTransaction:
    def __init__(self, db):
        self._db = db
        self._snapshot = None

    async def start(self):
        self._snapshot = copy.deepcopy(self._db.tables)

    async def commit(self):
        self._db.commits += 1

    async def rollback(self):
        self._db.tables = self._snapshot
        self._db.rollbacks += 1


class FakeConnection:
    """Understands the statements used by PostgresStorage."""

    def __init__(self, db):
        self._db = db

    def transaction(self):
        return FakeTransaction(self._db)

    async def execute(self, sql, *args):
        tables = self._db.tables
        if sql == pg._CREATE_SCHEMA:
            self._db.initialized = True
        elif sql == pg._ENSURE_ROW:
            owner, key = args
            tables["vaults"].setdefault(owner, {"encrypted_key": key, "initialized": False})
        elif sql == pg._WRITE_KEY:
            owner, key = args
            tables["vaults"][owner].update(encrypted_key=key, initialized=True)
        elif sql == pg._INSERT_SECRET:
            owner, idx, ciphertext = args
            assert (owner, idx) not in tables["secrets"]
            tables["secrets"][(owner, idx)] = ciphertext
        else:
            raise AssertionError(f"unexpected SQL: {sql}")

    async def fetchrow(self, sql, owner):
        assert sql in (pg._LOCK_ROW, pg._SELECT_VAULT)
        return self._db.tables["vaults"].get(owner)

    async def fetch(self, sql, owner):
        assert sql == pg._SELECT_SECRETS
        rows = sorted(
            (idx, ct) for (o, idx), ct in self._db.tables["secrets"].items() if o == owner
        )
        return [{"ciphertext": ct} for _, ct in rows]

    async def fetchval(self, sql, owner, *args):
        if any(isinstance(a, int) and not -2 ** 63 <= a < 2 ** 63 for a in args):
            raise OverflowError("value out of int64 range")
        secrets = self._db.tables["secrets"]
        if sql == pg._COUNT_SECRETS:
            return sum(1 for (o, _) in secrets if o == owner)
        if sql == pg._SELECT_SECRET:
            return secrets.get((owner, args[0]))
        raise AssertionError(f"unexpected SQL: {sql}")


class _Acquire:
    def __init__(self, conn):
        self._conn = conn

    async def __aenter__(self):
        return self._conn

    async def __aexit__(self, *exc):
        return False


class FakePool:
    def __init__(self):
        self.tables = {"vaults": {}, "secrets": {}}
        self.commits = 0
        self.rollbacks = 0
        self.initialized = False

    def acquire(self):
        return _Acquire(FakeConnection(self))


# --- Tests ---

class TestMemoryStorage:
    """Tests for MemoryStorage transactions."""

    @pytest.mark.asyncio
    async def test_absent_owner_is_default_record(self):
        storage = MemoryStorage()
        owner = generate_address()
        vault = await storage.get(owner)
        assert vault.initialized is False
        assert vault.encrypted_key == ZERO_HANDLE
        assert await storage.count(owner) == 0
        assert await storage.ciphertext_at(owner, 0) is None

    @pytest.mark.asyncio
    async def test_commit_on_clean_exit(self):
        storage = MemoryStorage()
        owner = generate_address()
        async with storage.transaction(owner) as tx:
            await tx.write_key("0x" + "aa" * 32)
            assert await tx.append_ciphertext("one") == 0
        vault = await storage.get(owner)
        assert vault.initialized is True
        assert vault.ciphertexts == ["one"]

    @pytest.mark.asyncio
    async def test_rollback_on_error(self):
        storage = MemoryStorage()
        owner = generate_address()
        with pytest.raises(Boom):
            async with storage.transaction(owner) as tx:
                await tx.write_key("0x" + "aa" * 32)
                raise Boom()
        assert (await storage.get(owner)).initialized is False
        assert storage.owners() == []

    @pytest.mark.asyncio
    async def test_get_returns_copy(self):
        storage = MemoryStorage()
        owner = generate_address()
        async with storage.transaction(owner) as tx:
            await tx.append_ciphertext("one")
        vault = await storage.get(owner)
        vault.ciphertexts.append("tampered")
        assert await storage.count(owner) == 1


class TestFileStorage:
    """Tests for FileStorage snapshots."""

    @pytest.mark.asyncio
    async def test_snapshot_roundtrip(self, tmp_path):
        path = tmp_path / "ledger.json"
        owner = generate_address()
        async with FileStorage(path) as storage:
            async with storage.transaction(owner) as tx:
                await tx.write_key("0x" + "bb" * 32)
                await tx.append_ciphertext("dv1:a:b")
        assert path.exists()

        async with FileStorage(path) as reopened:
            vault = await reopened.get(owner)
        assert vault.initialized is True
        assert vault.encrypted_key == "0x" + "bb" * 32
        assert vault.ciphertexts == ["dv1:a:b"]

    @pytest.mark.asyncio
    async def test_failed_transaction_not_written(self, tmp_path):
        path = tmp_path / "ledger.json"
        async with FileStorage(path) as storage:
            with pytest.raises(Boom):
                async with storage.transaction(generate_address()) as tx:
                    await tx.append_ciphertext("x")
                    raise Boom()
        assert not path.exists()

    @pytest.mark.asyncio
    async def test_ledger_on_file_storage(self, tmp_path, access, alice):
        path = tmp_path / "ledger.json"
        address = generate_address()
        async with FileStorage(path) as storage:
            ledger = VaultLedger(storage, access, address=address)
            encrypted = await access.create_encrypted_input(
                address, alice.identity).add_address(generate_address()).encrypt()
            await ledger.create_vault(alice, encrypted.handles[0], encrypted.input_proof)
            await ledger.store_secret(alice, "persisted")

        async with FileStorage(path) as storage:
            ledger = VaultLedger(storage, access, address=address)
            assert await ledger.has_vault(alice.identity) is True
            assert await ledger.get_secret(alice.identity, 0) == "persisted"

    @pytest.mark.asyncio
    async def test_unwritable_snapshot_leaves_no_vault(self, tmp_path, access, alice):
        blocker = tmp_path / "blocker"
        blocker.write_text("not a directory")
        async with FileStorage(blocker / "ledger.json") as storage:
            ledger = VaultLedger(storage, access)
            encrypted = await access.create_encrypted_input(
                ledger.address, alice.identity).add_address(generate_address()).encrypt()
            with pytest.raises(OSError):
                await ledger.create_vault(alice, encrypted.handles[0], encrypted.input_proof)

            assert await ledger.has_vault(alice.identity) is False
            assert await ledger.get_vault_key(alice.identity) == ZERO_HANDLE
            assert storage.owners() == []
        assert ledger.events == []

    @pytest.mark.asyncio
    async def test_failed_snapshot_keeps_previous_state(self, tmp_path, access, alice):
        path = tmp_path / "ledger.json"
        async with FileStorage(path) as storage:
            ledger = VaultLedger(storage, access)
            encrypted = await access.create_encrypted_input(
                ledger.address, alice.identity).add_address(generate_address()).encrypt()
            await ledger.create_vault(alice, encrypted.handles[0], encrypted.input_proof)
            await ledger.store_secret(alice, "first")
            on_disk = path.read_bytes()

            # the temp file path is taken, so the next snapshot cannot be written
            path.with_suffix(".tmp").mkdir()
            with pytest.raises(OSError):
                await ledger.store_secret(alice, "second")

            assert await ledger.get_secret_count(alice.identity) == 1
            assert await ledger.get_secret(alice.identity, 0) == "first"
            assert path.read_bytes() == on_disk
        assert [e.name for e in ledger.events] == ["VaultCreated", "SecretStored"]


class TestPostgresStorage:
    """Tests for PostgresStorage against a fake pool."""

    @pytest.mark.asyncio
    async def test_open_creates_schema(self):
        pool = FakePool()
        async with PostgresStorage(pool):
            pass
        assert pool.initialized is True

    def test_requires_pool_or_dsn(self):
        with pytest.raises(ValueError):
            PostgresStorage()

    @pytest.mark.asyncio
    async def test_transaction_commits(self):
        pool = FakePool()
        storage = PostgresStorage(pool)
        owner = generate_address()
        async with storage.transaction(owner) as tx:
            assert tx.initialized is False
            await tx.write_key("0x" + "cc" * 32)
            assert await tx.append_ciphertext("one") == 0
            assert await tx.append_ciphertext("two") == 1

        assert pool.commits == 1
        vault = await storage.get(owner)
        assert vault.initialized is True
        assert vault.ciphertexts == ["one", "two"]
        assert await storage.count(owner) == 2
        assert await storage.ciphertext_at(owner, 1) == "two"
        assert await storage.ciphertext_at(owner, 2) is None
        assert await storage.ciphertext_at(owner, -1) is None

    @pytest.mark.asyncio
    async def test_transaction_rolls_back(self):
        pool = FakePool()
        storage = PostgresStorage(pool)
        owner = generate_address()
        with pytest.raises(Boom):
            async with storage.transaction(owner) as tx:
                await tx.write_key("0x" + "cc" * 32)
                raise Boom()

        assert pool.rollbacks == 1
        assert (await storage.get(owner)).initialized is False

    @pytest.mark.asyncio
    async def test_next_index_follows_existing_rows(self):
        pool = FakePool()
        storage = PostgresStorage(pool)
        owner = generate_address()
        async with storage.transaction(owner) as tx:
            await tx.append_ciphertext("one")
        async with storage.transaction(owner) as tx:
            assert tx.secret_count == 1
            assert await tx.append_ciphertext("two") == 1

    @pytest.mark.asyncio
    async def test_ledger_on_postgres(self, access, alice, bob):
        storage = PostgresStorage(FakePool())
        ledger = VaultLedger(storage, access)
        encrypted = await access.create_encrypted_input(
            ledger.address, alice.identity).add_address(generate_address()).encrypt()
        await ledger.create_vault(alice, encrypted.handles[0], encrypted.input_proof)
        await ledger.store_secret(alice, "dv1:iv1:payload1")

        assert await ledger.get_secret_count(alice.identity) == 1
        assert await ledger.get_secret(alice.identity, 0) == "dv1:iv1:payload1"
        assert await ledger.has_vault(bob.identity) is False

    @pytest.mark.asyncio
    async def test_huge_index_is_out_of_bounds(self, access, alice):
        storage = PostgresStorage(FakePool())
        ledger = VaultLedger(storage, access)
        encrypted = await access.create_encrypted_input(
            ledger.address, alice.identity).add_address(generate_address()).encrypt()
        await ledger.create_vault(alice, encrypted.handles[0], encrypted.input_proof)
        await ledger.store_secret(alice, "one")

        assert await storage.ciphertext_at(alice.identity, 2 ** 63) is None
        with pytest.raises(SecretIndexOutOfBounds) as exc:
            await ledger.get_secret(alice.identity, 2 ** 70)
        assert exc.value.count == 1
