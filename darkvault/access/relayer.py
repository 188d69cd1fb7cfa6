"""
Relayer client — user decryption of an encrypted handle over HTTP.

The relayer re-encrypts a handle for the requester once it has checked the
grant list and the signed session. Only the decryption leg lives here;
input validation and grants happen on the ledger side.
"""
import logging
from typing import Any, Optional

import aiohttp

from ..exceptions import AccessDenied, InvalidCredentials, RelayerError
from ..models import normalize_address
from .base import DecryptionSession

logger = logging.getLogger("darkvault")

USER_DECRYPT_PATH = "/v1/user-decrypt"


def _as_address(value: Any) -> str:
    if isinstance(value, int):
        return f"0x{value:040x}"
    return normalize_address(str(value))


class RelayerClient:
    """aiohttp-backed user-decryption client.

    Args:
        base_url: Relayer endpoint, e.g. ``https://relayer.example.org``.
        contract_address: Ledger address the handles belong to.
        session: Optional shared ``aiohttp.ClientSession``.
        timeout: Request timeout in seconds.
    """

    def __init__(
        self,
        base_url: str,
        contract_address: str,
        session: Optional[aiohttp.ClientSession] = None,
        timeout: float = 30.0,
    ):
        self._base_url = base_url.rstrip("/")
        self._contract = normalize_address(contract_address)
        self._session = session
        self._owns_session = session is None
        self._timeout = aiohttp.ClientTimeout(total=timeout)

    async def __aenter__(self) -> "RelayerClient":
        return self

    async def __aexit__(self, *exc) -> None:
        await self.close()

    async def close(self) -> None:
        if self._owns_session and self._session is not None:
            await self._session.close()
            self._session = None

    def _client(self) -> aiohttp.ClientSession:
        if self._session is None:
            self._session = aiohttp.ClientSession(timeout=self._timeout)
        return self._session

    def _request_body(
        self, handle: str, requester: str, credentials: DecryptionSession
    ) -> dict:
        return {
            "handleContractPairs": [
                {"handle": handle, "contractAddress": self._contract},
            ],
            "requestValidity": {
                "startTimestamp": str(credentials.start_timestamp),
                "durationDays": str(credentials.duration_days),
            },
            "contractAddresses": credentials.contract_addresses,
            "userAddress": requester,
            "signature": credentials.signature.removeprefix("0x"),
            "publicKey": credentials.public_key,
        }

    async def request_user_decryption(
        self, handle: str, requester: str, credentials: DecryptionSession
    ) -> str:
        """Ask the relayer to decrypt ``handle`` for ``requester``.

        Raises:
            InvalidCredentials: session expired, mismatched or rejected (401).
            AccessDenied: relayer reports missing grants (403).
            RelayerError: transport failure or unexpected response.
        """
        requester = normalize_address(requester)
        if credentials.user != requester:
            raise InvalidCredentials("Session was issued to another identity")
        if credentials.is_expired():
            raise InvalidCredentials("Session is expired or not yet valid")
        if self._contract not in credentials.contract_addresses:
            raise InvalidCredentials(
                f"Session does not cover contract {self._contract}"
            )

        url = f"{self._base_url}{USER_DECRYPT_PATH}"
        body = self._request_body(handle, requester, credentials)
        try:
            async with self._client().post(url, json=body) as response:
                if response.status == 401:
                    raise InvalidCredentials(await response.text())
                if response.status == 403:
                    raise AccessDenied(await response.text())
                if response.status >= 400:
                    raise RelayerError(
                        f"Relayer returned HTTP {response.status}",
                        status=response.status,
                    )
                data = await response.json()
        except aiohttp.ClientError as err:
            raise RelayerError(f"Relayer request failed: {err}") from err

        value = None
        if isinstance(data, dict):
            value = data.get(handle)
            if value is None:
                value = (data.get("clearValues") or {}).get(handle)
        if value is None:
            raise RelayerError("No decrypted value for handle in relayer response")
        logger.debug("Relayer decrypted handle %s… for %s", handle[:10], requester)
        return _as_address(value)
