"""
DarkVault CLI — thin wrappers issuing one ledger call each.

    darkvault deploy
    darkvault create-vault
    darkvault store-secret --plaintext "..." --key <vault key>
    darkvault secret-count --owner <address>
    darkvault get-secret --owner <address> --index 0
    darkvault decrypt-key --owner <address>
"""
from __future__ import annotations

import sys
import asyncio
from typing import Optional

import click
from pydantic import ValidationError
from rich.console import Console
from rich.table import Table

from .access.relayer import RelayerClient
from .client.cipher import encrypt_secret
from .client.flow import VaultClient
from .conf import VaultConfig
from .deployment import Runtime, create_deployment, load_deployment, open_runtime
from .exceptions import DarkVaultError
from .models import CallerContext, ZERO_HANDLE, normalize_address
from .version import __version__

console = Console(soft_wrap=True)


def _run(coro) -> None:
    """Run a coroutine; domain errors become a red message and exit 1."""
    try:
        asyncio.run(coro)
    except DarkVaultError as err:
        console.print(f"[red]✗ {err.message}[/] [dim]({err.code})[/]")
        sys.exit(1)


def _account(config: VaultConfig, runtime: Runtime) -> str:
    return config.account or runtime.deployment.default_account


def _client(config: VaultConfig, runtime: Runtime) -> VaultClient:
    caller = CallerContext(identity=_account(config, runtime))
    return VaultClient(runtime.ledger, runtime.access, caller)


def _address_option(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    try:
        return normalize_address(value)
    except DarkVaultError as err:
        raise click.BadParameter(err.message) from err


# ─── Main Group ──────────────────────────────────────────────────

@click.group()
@click.version_option(__version__, prog_name="darkvault")
@click.option("--home", default=None, help="State directory (DARKVAULT_HOME)")
@click.option("--account", default=None, help="Acting account address (DARKVAULT_ACCOUNT)")
@click.pass_context
def cli(ctx: click.Context, home: Optional[str], account: Optional[str]) -> None:
    """DarkVault — encrypted vaults with FHE-protected keys."""
    try:
        ctx.obj = VaultConfig.from_env(home=home, account=account)
    except (ValidationError, ValueError) as err:
        raise click.UsageError(f"Invalid configuration: {err}") from err
    if ctx.obj.storage_backend == "memory":
        raise click.UsageError(
            "DARKVAULT_STORAGE=memory does not persist between commands; "
            "use file or postgres"
        )


# ─── Deployment ──────────────────────────────────────────────────

@cli.command()
@click.option("--force", is_flag=True, help="Replace an existing deployment")
@click.pass_obj
def deploy(config: VaultConfig, force: bool) -> None:
    """Deploy the DarkVault ledger."""
    try:
        deployment, created = create_deployment(config, force=force)
    except DarkVaultError as err:
        console.print(f"[red]✗ {err.message}[/]")
        sys.exit(1)
    verb = "deployed" if created else "reusing"
    console.print(f"DarkVault contract {verb}: [bold]{deployment.address}[/]")
    console.print(f"Default account: {deployment.default_account}")


@cli.command()
@click.pass_obj
def address(config: VaultConfig) -> None:
    """Print the DarkVault address."""
    try:
        deployment = load_deployment(config)
    except DarkVaultError as err:
        console.print(f"[red]✗ {err.message}[/]")
        sys.exit(1)
    console.print(f"DarkVault address is {deployment.address}")


# ─── Vault lifecycle ─────────────────────────────────────────────

@cli.command("create-vault")
@click.option("--key", default=None, help="Vault key address to encrypt (defaults to random)")
@click.pass_obj
def create_vault(config: VaultConfig, key: Optional[str]) -> None:
    """Create a vault and store an encrypted key address."""
    key = _address_option(key)

    async def _create():
        async with open_runtime(config) as runtime:
            console.print(f"DarkVault: {runtime.ledger.address}")
            vault_key = await _client(config, runtime).create_vault(key)
            console.print("[green]✓[/] Vault created")
            console.print(f"Vault key address: {vault_key}")

    _run(_create())


@cli.command("rotate-key")
@click.option("--key", default=None, help="New vault key address (defaults to random)")
@click.pass_obj
def rotate_key(config: VaultConfig, key: Optional[str]) -> None:
    """Rotate the encrypted vault key."""
    key = _address_option(key)

    async def _rotate():
        async with open_runtime(config) as runtime:
            console.print(f"DarkVault: {runtime.ledger.address}")
            vault_key = await _client(config, runtime).rotate_key(key)
            console.print("[green]✓[/] Vault key rotated")
            console.print(f"Rotated vault key address: {vault_key}")

    _run(_rotate())


# ─── Secrets ─────────────────────────────────────────────────────

@cli.command("store-secret")
@click.option("--ciphertext", default=None, help="Ciphertext encrypted off-ledger with the vault key")
@click.option("--plaintext", default=None, help="Plaintext to encrypt locally (needs --key)")
@click.option("--key", default=None, help="Vault key address used with --plaintext")
@click.pass_obj
def store_secret(
    config: VaultConfig,
    ciphertext: Optional[str],
    plaintext: Optional[str],
    key: Optional[str],
) -> None:
    """Store an encrypted string in the caller's vault."""
    if (ciphertext is None) == (plaintext is None):
        raise click.UsageError("Pass exactly one of --ciphertext or --plaintext")
    if plaintext is not None:
        key = _address_option(key)
        if key is None:
            raise click.UsageError("--plaintext requires --key")
        if not plaintext.strip():
            raise click.UsageError("Secret must not be empty")
        ciphertext = encrypt_secret(key, plaintext.strip())

    async def _store():
        async with open_runtime(config) as runtime:
            caller = CallerContext(identity=_account(config, runtime))
            index = await runtime.ledger.store_secret(caller, ciphertext)
            console.print(f"[green]✓[/] Secret stored at index {index}")

    _run(_store())


@cli.command("secret-count")
@click.option("--owner", default=None, help="Vault owner address (defaults to the account)")
@click.pass_obj
def secret_count(config: VaultConfig, owner: Optional[str]) -> None:
    """Return the number of ciphertext entries for an owner."""
    owner = _address_option(owner)

    async def _count():
        async with open_runtime(config) as runtime:
            count = await runtime.ledger.get_secret_count(owner or _account(config, runtime))
            console.print(f"Secret count: {count}")

    _run(_count())


@cli.command("get-secret")
@click.option("--owner", default=None, help="Vault owner address (defaults to the account)")
@click.option("--index", required=True, type=int, help="Ciphertext index")
@click.pass_obj
def get_secret(config: VaultConfig, owner: Optional[str], index: int) -> None:
    """Read a ciphertext entry by index for an owner."""
    owner = _address_option(owner)

    async def _get():
        async with open_runtime(config) as runtime:
            ciphertext = await runtime.ledger.get_secret(
                owner or _account(config, runtime), index,
            )
            console.print(f"Ciphertext: {ciphertext}", soft_wrap=True)

    _run(_get())


@cli.command("decrypt-key")
@click.option("--owner", default=None, help="Vault owner address (defaults to the account)")
@click.pass_obj
def decrypt_key(config: VaultConfig, owner: Optional[str]) -> None:
    """Decrypt the vault key for an owner."""
    owner = _address_option(owner)

    async def _decrypt():
        async with open_runtime(config) as runtime:
            account = _account(config, runtime)
            target = owner or account
            if await runtime.ledger.get_vault_key(target) == ZERO_HANDLE:
                console.print("Encrypted key is not initialized.")
                return
            session = runtime.access.create_decryption_session(
                account,
                [runtime.ledger.address],
                duration_days=config.decrypt_duration_days,
            )
            if config.relayer_url:
                async with RelayerClient(config.relayer_url, runtime.ledger.address) as relayer:
                    client = VaultClient(
                        runtime.ledger, runtime.access,
                        CallerContext(identity=account), decryptor=relayer,
                    )
                    vault_key = await client.decrypt_key(session, owner=target)
            else:
                vault_key = await _client(config, runtime).decrypt_key(session, owner=target)
            console.print(f"Vault key address: {vault_key}")

    _run(_decrypt())


@cli.command()
@click.option("--key", required=True, help="Clear vault key address")
@click.option("--owner", default=None, help="Vault owner address (defaults to the account)")
@click.pass_obj
def reveal(config: VaultConfig, key: str, owner: Optional[str]) -> None:
    """Decrypt every stored secret locally with a vault key."""
    key = _address_option(key)
    owner = _address_option(owner)

    async def _reveal():
        async with open_runtime(config) as runtime:
            client = _client(config, runtime)
            secrets = await client.reveal_secrets(owner=owner, key=key)
            table = Table(title="DarkVault Secrets")
            table.add_column("#", justify="right")
            table.add_column("Secret")
            for index, secret in enumerate(secrets):
                table.add_row(
                    str(index),
                    secret if secret is not None
                    else "[red]Unable to decrypt with the current key.[/]",
                )
            console.print(table)

    _run(_reveal())


if __name__ == "__main__":
    cli()
