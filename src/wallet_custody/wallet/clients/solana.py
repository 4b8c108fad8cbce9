"""Solana chain client: JSON-RPC over httpx, messages built with solders."""

from __future__ import annotations

import asyncio
import base64
import logging
from typing import Any, Optional

import httpx
from solders.hash import Hash
from solders.message import Message
from solders.pubkey import Pubkey
from solders.system_program import TransferParams, transfer

from wallet_custody.config import SolanaConfig
from wallet_custody.errors import UpstreamUnavailable
from wallet_custody.storage.models import ChainFamily, TransferRequest
from wallet_custody.wallet.addresses import validate_address
from wallet_custody.wallet.chains import ChainMetadata
from wallet_custody.wallet.clients.base import (
    ChainClient,
    TokenInfo,
    to_base_units,
    validate_amount,
)
from wallet_custody.wallet.custody import CustodyClient

logger = logging.getLogger("wallet_custody.wallet.clients.solana")

LAMPORTS_DECIMALS = 9
_CONFIRMED_STATES = ("confirmed", "finalized")


class SolanaRpcError(RuntimeError):
    """Error object returned by a Solana JSON-RPC call."""


class SolanaChainClient(ChainClient):
    """Balance reads, custody signing and submission for one Solana cluster."""

    family = ChainFamily.SOLANA

    def __init__(
        self,
        chain: ChainMetadata,
        custody: CustodyClient,
        rpc_url: Optional[str] = None,
        settings: Optional[SolanaConfig] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        super().__init__(chain, custody, rpc_url)
        self.settings = settings or SolanaConfig()
        self._transport = transport
        self._http: Optional[httpx.AsyncClient] = None

    def _client(self) -> httpx.AsyncClient:
        if self._http is None:
            self._http = httpx.AsyncClient(timeout=30, transport=self._transport)
        return self._http

    async def rpc(self, method: str, params: list) -> Any:
        res = await self._client().post(
            self.rpc_url,
            json={"jsonrpc": "2.0", "id": 1, "method": method, "params": params},
        )
        res.raise_for_status()
        out = res.json()
        if "error" in out:
            error = out["error"]
            message = error.get("message", error) if isinstance(error, dict) else error
            raise SolanaRpcError(f"RPC error for {method}: {message}")
        return out.get("result")

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get_balance(self, address: str, token_address: Optional[str] = None) -> int:
        if token_address is None:
            res = await self.rpc("getBalance", [address])
            return int(res.get("value", 0))

        res = await self.rpc(
            "getTokenAccountsByOwner",
            [address, {"mint": token_address}, {"encoding": "jsonParsed"}],
        )
        total = 0
        for entry in res.get("value") or []:
            info = entry["account"]["data"]["parsed"]["info"]
            total += int(info["tokenAmount"]["amount"])
        return total

    async def read_token_metadata(self, token_address: str) -> TokenInfo:
        """SPL mints carry decimals only; the mint address stands in for name and symbol."""
        res = await self.rpc("getAccountInfo", [token_address, {"encoding": "jsonParsed"}])
        value = res.get("value") if res else None
        if not value:
            raise SolanaRpcError(f"Mint account not found: {token_address}")
        decimals = int(value["data"]["parsed"]["info"]["decimals"])
        return token_address, token_address, decimals

    async def get_latest_blockhash(self) -> Hash:
        res = await self.rpc("getLatestBlockhash", [])
        return Hash.from_string(res["value"]["blockhash"])

    # ------------------------------------------------------------------
    # Transactions
    # ------------------------------------------------------------------

    async def build_transfer_message(self, sender: str, request: TransferRequest) -> Message:
        """System-program transfer with *sender* as fee payer."""
        amount = validate_amount(request.amount)
        to_address = validate_address(request.to, ChainFamily.SOLANA)
        if request.data:
            logger.debug("Ignoring data payload on Solana transfer")

        payer = Pubkey.from_string(sender)
        ix = transfer(
            TransferParams(
                from_pubkey=payer,
                to_pubkey=Pubkey.from_string(to_address),
                lamports=to_base_units(amount, LAMPORTS_DECIMALS),
            )
        )
        bh = await self.get_latest_blockhash()
        return Message.new_with_blockhash([ix], payer, bh)

    async def submit(self, signed_b64: str) -> str:
        res = await self.rpc(
            "sendTransaction",
            [signed_b64, {"encoding": "base64", "skipPreflight": False}],
        )
        return str(res)

    async def confirm(self, signature: str) -> None:
        """Poll until *signature* is confirmed; :class:`UpstreamUnavailable` on timeout."""
        loop = asyncio.get_running_loop()
        start = loop.time()
        while True:
            res = await self.rpc(
                "getSignatureStatuses",
                [[signature], {"searchTransactionHistory": True}],
            )
            val = (res.get("value") or [None])[0]
            if val:
                if val.get("err"):
                    raise SolanaRpcError(f"Transaction {signature} failed: {val['err']}")
                if val.get("confirmationStatus") in _CONFIRMED_STATES:
                    return
            if loop.time() - start > self.settings.confirm_timeout_seconds:
                raise UpstreamUnavailable(
                    f"Transaction {signature} not confirmed within "
                    f"{self.settings.confirm_timeout_seconds:g}s",
                    details={"transaction_hash": signature},
                )
            await asyncio.sleep(self.settings.confirm_poll_seconds)

    async def send_transaction(
        self,
        address: str,
        key_share_bundle: str,
        request: TransferRequest,
    ) -> str:
        msg = await self.build_transfer_message(address, request)
        serialized = base64.b64encode(bytes(msg)).decode()
        signed_b64 = await self.custody.sign_transaction(
            self.family, address, key_share_bundle, serialized
        )
        sig = await self.submit(signed_b64)
        await self.confirm(sig)
        logger.info(
            f"Confirmed {request.amount} SOL from {address} to {request.to} "
            f"on {self.chain.name}: {sig}"
        )
        return sig

    async def aclose(self) -> None:
        if self._http is not None:
            await self._http.aclose()
            self._http = None
