"""
Local deployments — ledger address, default account and mock key material.

A deployment lives in ``<home>/deployment.json``; ledger and access-layer
state sit next to it. ``open_runtime`` wires storage, access layer and
ledger together for one command.
"""
import os
import time
import base64
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import AsyncIterator, Optional

import orjson
from pydantic import BaseModel, Field, ValidationError

from .access.mock import MockAccessLayer
from .conf import VaultConfig, generate_fhe_key
from .exceptions import DeploymentError
from .ledger import VaultLedger
from .models import generate_address
from .storage import FileStorage, MemoryStorage, PostgresStorage, VaultStorage

logger = logging.getLogger("darkvault")


class Deployment(BaseModel):
    address: str
    default_account: str
    fhe_key: Optional[str] = None
    created_at: float = Field(default_factory=time.time)


@dataclass
class Runtime:
    deployment: Deployment
    ledger: VaultLedger
    access: MockAccessLayer
    storage: VaultStorage


def load_deployment(config: VaultConfig) -> Deployment:
    """Read the deployment file.

    Raises:
        DeploymentError: If nothing is deployed or the file is unreadable.
    """
    path = config.deployment_file
    if not path.exists():
        raise DeploymentError(
            f"No DarkVault deployment in {config.home}. Run 'darkvault deploy' first"
        )
    try:
        return Deployment.model_validate(orjson.loads(path.read_bytes()))
    except (orjson.JSONDecodeError, ValidationError) as err:
        raise DeploymentError(f"Corrupt deployment file {path}: {err}") from err


def create_deployment(config: VaultConfig, force: bool = False) -> tuple[Deployment, bool]:
    """Deploy a new ledger unless one exists.

    Returns:
        (deployment, created) — created is False when an existing
        deployment was reused.
    """
    if config.deployment_file.exists() and not force:
        return load_deployment(config), False
    for stale in (config.ledger_file, config.access_file):
        if stale.exists():
            stale.unlink()
    deployment = Deployment(
        address=generate_address(),
        default_account=config.account or generate_address(),
        fhe_key=None if config.fhe_key else generate_fhe_key(),
    )
    config.home.mkdir(parents=True, exist_ok=True)
    tmp = config.deployment_file.with_suffix(".tmp")
    tmp.write_bytes(orjson.dumps(deployment.model_dump(), option=orjson.OPT_INDENT_2))
    os.replace(tmp, config.deployment_file)
    logger.info("Deployed DarkVault ledger at %s", deployment.address)
    return deployment, True


def build_storage(config: VaultConfig) -> VaultStorage:
    if config.storage_backend == "postgres":
        return PostgresStorage(dsn=config.dsn)
    if config.storage_backend == "memory":
        return MemoryStorage()
    return FileStorage(config.ledger_file)


def _master_key(config: VaultConfig, deployment: Deployment) -> bytes:
    if config.fhe_key:
        return config.fhe_key
    if deployment.fhe_key:
        return base64.b64decode(deployment.fhe_key)
    raise DeploymentError(
        "Deployment expects DARKVAULT_FHE_KEY to be set in the environment"
    )


@asynccontextmanager
async def open_runtime(config: VaultConfig) -> AsyncIterator[Runtime]:
    """Open storage and build the ledger for the current deployment."""
    deployment = load_deployment(config)
    access = MockAccessLayer(_master_key(config, deployment), path=config.access_file)
    storage = build_storage(config)
    async with storage:
        ledger = VaultLedger(storage, access, address=deployment.address)
        yield Runtime(deployment=deployment, ledger=ledger, access=access, storage=storage)
