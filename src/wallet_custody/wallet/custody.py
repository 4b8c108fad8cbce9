"""HTTP client for the external key-custody service.

The custody service runs the threshold key-generation ceremony and does all
signing.  This module is the only place that understands the shape of a
key-share bundle; everywhere else it is opaque JSON text.
"""

from __future__ import annotations

import asyncio
import json
import logging
import threading
from dataclasses import dataclass, field
from typing import Any, Optional

import httpx

from wallet_custody.config import CustodyServiceConfig
from wallet_custody.errors import CustodyServiceError
from wallet_custody.storage.models import ChainFamily

logger = logging.getLogger("wallet_custody.wallet.custody")

THRESHOLD_SCHEME = "TWO_OF_TWO"

# Response fields that are safe to log.
_SAFE_FIELDS = ("accountAddress", "networkId", "chainId")
_SECRET_FIELDS = ("externalServerKeyShares", "keyShares", "token", "jwt")


@dataclass(frozen=True)
class AccountCreation:
    """Result of a key-generation ceremony: the address and our share bundle."""

    address: str
    key_share_bundle: str = field(repr=False)


def _safe_fields(payload: Any) -> dict[str, Any]:
    if not isinstance(payload, dict):
        return {}
    return {k: payload[k] for k in _SAFE_FIELDS if k in payload}


def _redacted(payload: Any) -> Any:
    if isinstance(payload, dict):
        return {
            k: ("<redacted>" if k in _SECRET_FIELDS else _redacted(v))
            for k, v in payload.items()
        }
    if isinstance(payload, list):
        return [_redacted(v) for v in payload]
    return payload


def _error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text[:200] or response.reason_phrase
    if isinstance(body, dict):
        for key in ("error", "message", "detail"):
            value = body.get(key)
            if isinstance(value, str) and value:
                return value
            if isinstance(value, dict) and isinstance(value.get("message"), str):
                return value["message"]
    return response.reason_phrase


def encode_key_shares(shares: list[str]) -> str:
    return json.dumps(shares)


def decode_key_shares(bundle: str) -> list[str]:
    shares = json.loads(bundle)
    if not isinstance(shares, list):
        raise ValueError("Key-share bundle is not a list")
    return shares


class CustodyClient:
    """Async client for the custody service's wallet API.

    Authenticates lazily, once, under an :class:`asyncio.Lock`.  The
    session token is reused until :meth:`aclose`.
    """

    def __init__(
        self,
        config: CustodyServiceConfig,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.config = config
        self._transport = transport
        self._http: Optional[httpx.AsyncClient] = None
        self._session_token: Optional[str] = None
        self._auth_lock = asyncio.Lock()

    # ------------------------------------------------------------------
    # Plumbing
    # ------------------------------------------------------------------

    @property
    def authenticated(self) -> bool:
        return self._session_token is not None

    def _client(self) -> httpx.AsyncClient:
        if self._http is None:
            self._http = httpx.AsyncClient(
                base_url=self.config.base_url.rstrip("/"),
                timeout=self.config.timeout_seconds,
                transport=self._transport,
            )
        return self._http

    def _env_path(self, suffix: str) -> str:
        return f"/environments/{self.config.environment_id}/{suffix.lstrip('/')}"

    async def _request(
        self,
        path: str,
        payload: dict[str, Any],
        bearer: str,
        operation: str,
    ) -> dict[str, Any]:
        response = await self._client().post(
            path,
            json=payload,
            headers={"Authorization": f"Bearer {bearer}"},
        )
        if response.status_code >= 400:
            message = _error_message(response)
            logger.warning(
                f"Custody {operation} failed with HTTP {response.status_code}"
            )
            raise CustodyServiceError(message, status=response.status_code)

        try:
            body = response.json()
        except ValueError as exc:
            raise CustodyServiceError(
                f"Custody {operation} returned a non-JSON response",
                status=response.status_code,
            ) from exc

        logger.debug(f"Custody {operation} ok: {_safe_fields(body)}")
        if self.config.log_sdk_debug:
            logger.debug(f"Custody {operation} response: {_redacted(body)}")
        return body

    async def authenticate(self) -> None:
        """Exchange the API token for a session token (idempotent)."""
        if self._session_token is not None:
            return
        async with self._auth_lock:
            if self._session_token is not None:
                return
            body = await self._request(
                self._env_path("auth/token"),
                {},
                bearer=self.config.api_token,
                operation="authenticate",
            )
            token = body.get("token") or body.get("jwt")
            if not token:
                raise CustodyServiceError("Authentication response carried no token", status=401)
            self._session_token = token
            logger.info("Authenticated with custody service")

    async def _authed(self, path: str, payload: dict[str, Any], operation: str) -> dict[str, Any]:
        await self.authenticate()
        assert self._session_token is not None
        return await self._request(path, payload, bearer=self._session_token, operation=operation)

    async def aclose(self) -> None:
        if self._http is not None:
            await self._http.aclose()
            self._http = None
        self._session_token = None

    # ------------------------------------------------------------------
    # Wallet API
    # ------------------------------------------------------------------

    async def create_account(
        self,
        chain_family: ChainFamily,
        network_id: str,
        user_id: str,
    ) -> AccountCreation:
        """Run the key-generation ceremony for a new account owned by *user_id*.

        The custody service refuses a second account per user and family.
        """
        body = await self._authed(
            self._env_path(f"{chain_family.value}/wallets"),
            {
                "thresholdSignatureScheme": THRESHOLD_SCHEME,
                "backUpToClientShareService": False,
                "networkId": network_id,
                "userId": user_id,
            },
            operation="create_account",
        )
        address = body.get("accountAddress")
        shares = body.get("externalServerKeyShares")
        if not address or not isinstance(shares, list) or not shares:
            raise CustodyServiceError("Custody service returned an incomplete account")
        logger.info(f"Custody account created on {chain_family.value}: {address}")
        return AccountCreation(address=address, key_share_bundle=encode_key_shares(shares))

    async def sign_message(
        self,
        chain_family: ChainFamily,
        address: str,
        key_share_bundle: str,
        message: str,
    ) -> str:
        body = await self._authed(
            self._env_path(f"{chain_family.value}/wallets/{address}/sign-message"),
            {
                "accountAddress": address,
                "externalServerKeyShares": decode_key_shares(key_share_bundle),
                "message": message,
            },
            operation="sign_message",
        )
        signature = body.get("signature")
        if not signature:
            raise CustodyServiceError("Custody service returned no signature")
        return signature

    async def sign_transaction(
        self,
        chain_family: ChainFamily,
        address: str,
        key_share_bundle: str,
        transaction: Any,
    ) -> str:
        """Have the custody service sign *transaction*.

        EVM: *transaction* is a tx dict, the result is the signed raw
        transaction as ``0x`` hex.  Solana: *transaction* is the base64
        serialized message, the result is the base64 signed transaction.
        """
        body = await self._authed(
            self._env_path(f"{chain_family.value}/wallets/{address}/sign-transaction"),
            {
                "accountAddress": address,
                "externalServerKeyShares": decode_key_shares(key_share_bundle),
                "transaction": transaction,
            },
            operation="sign_transaction",
        )
        signed = body.get("signedTransaction")
        if not signed:
            raise CustodyServiceError("Custody service returned no signed transaction")
        return signed


# ---------------------------------------------------------------------------
# Process-wide handle
# ---------------------------------------------------------------------------

_client_instance: Optional[CustodyClient] = None
_creation_lock = threading.Lock()


def get_custody_client(
    config: CustodyServiceConfig,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> CustodyClient:
    """Return the shared :class:`CustodyClient`, creating it on first use."""
    global _client_instance
    if _client_instance is None:
        with _creation_lock:
            # Double-checked locking
            if _client_instance is None:
                _client_instance = CustodyClient(config, transport=transport)
    return _client_instance


def reset_custody_client() -> None:
    """Forget the shared client.  The caller owns closing the old one."""
    global _client_instance
    with _creation_lock:
        _client_instance = None
