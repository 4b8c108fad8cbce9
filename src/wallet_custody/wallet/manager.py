"""High-level wallet manager used by the runtime and CLI."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from decimal import Decimal
from typing import AsyncIterator, Optional

from wallet_custody.config import CustodyConfig
from wallet_custody.errors import CustodyError, UnsupportedChain, to_custody_error
from wallet_custody.storage.database import Database
from wallet_custody.storage.models import (
    BalanceResult,
    ChainFamily,
    SignatureResult,
    TransactionResult,
    TransferRequest,
    WalletRecord,
    WalletView,
)
from wallet_custody.wallet.addresses import validate_address
from wallet_custody.wallet.chains import ChainId, ChainMetadata, default_chain_for_family, get_chain
from wallet_custody.wallet.clients import ChainClientFactory
from wallet_custody.wallet.clients.base import format_units, validate_amount
from wallet_custody.wallet.provisioning import WalletProvisioningService
from wallet_custody.wallet.token_cache import TokenMetadataCache, native_token_metadata
from wallet_custody.wallet.vault import KeyShareVault

logger = logging.getLogger("wallet_custody.wallet.manager")


@asynccontextmanager
async def error_boundary(operation: str) -> AsyncIterator[None]:
    """Re-raise any failure inside the block as a classified :class:`CustodyError`."""
    try:
        yield
    except CustodyError:
        raise
    except Exception as exc:
        raise to_custody_error(exc, operation) from exc


def explorer_link(chain: ChainMetadata, tx_hash: str) -> Optional[str]:
    if not chain.explorer_url:
        return None
    url = f"{chain.explorer_url}/tx/{tx_hash}"
    if chain.family is ChainFamily.SOLANA and chain.chain_id != "mainnet-beta":
        url += f"?cluster={chain.chain_id}"
    return url


class WalletManager:
    """Orchestrates provisioning, vault, token cache and chain clients.

    Every public method runs inside :func:`error_boundary`, so callers only
    ever see :class:`CustodyError` subclasses.
    """

    def __init__(
        self,
        config: CustodyConfig,
        db: Database,
        vault: KeyShareVault,
        clients: ChainClientFactory,
    ) -> None:
        self.config = config
        self.db = db
        self.vault = vault
        self.clients = clients
        self.provisioning = WalletProvisioningService(db, vault, clients, config)
        self.token_cache = TokenMetadataCache(db, clients)

    def _resolve_chain(self, wallet: WalletRecord, chain_id: Optional[ChainId]) -> ChainMetadata:
        if chain_id is None or chain_id == "":
            return default_chain_for_family(self.config, wallet.chain_family)
        chain = get_chain(chain_id)
        if chain.family is not wallet.chain_family:
            raise UnsupportedChain(
                f"Chain {chain_id!r} does not belong to the {wallet.chain_family.value} family",
                details={"chain_id": str(chain_id)},
            )
        return chain

    # ------------------------------------------------------------------
    # Wallet lifecycle
    # ------------------------------------------------------------------

    async def list_wallets(self, user_id: str) -> list[WalletView]:
        async with error_boundary("list wallets"):
            return await self.provisioning.list_wallets(user_id)

    async def create_wallet(self, user_id: str, chain_family: ChainFamily | str) -> WalletView:
        """Return the user's wallet for *chain_family*, creating it on first call."""
        async with error_boundary("create wallet"):
            return await self.provisioning.get_or_create_wallet(user_id, chain_family)

    # ------------------------------------------------------------------
    # Balances
    # ------------------------------------------------------------------

    async def get_balance(
        self,
        user_id: str,
        wallet_id: str,
        token_address: Optional[str] = None,
        chain_id: Optional[ChainId] = None,
    ) -> BalanceResult:
        """Native balance, or the balance of *token_address*, in human units."""
        async with error_boundary("get balance"):
            wallet = await self.provisioning.get_wallet(user_id, wallet_id)
            chain = self._resolve_chain(wallet, chain_id)
            client = self.clients.get(chain)

            if token_address:
                token = await self.token_cache.get_token_metadata(token_address, chain)
                raw = await client.get_balance(wallet.address, token.address)
            else:
                token = native_token_metadata(chain, wallet.address)
                raw = await client.get_balance(wallet.address)

            return BalanceResult(
                balance=format_units(raw, token.decimals),
                raw_balance=raw,
                chain_id=chain.key,
                chain_family=wallet.chain_family,
                token=token,
            )

    # ------------------------------------------------------------------
    # Signing
    # ------------------------------------------------------------------

    async def sign_message(self, user_id: str, wallet_id: str, message: str) -> SignatureResult:
        async with error_boundary("sign message"):
            ctx = await self.provisioning.get_wallet_for_signing(user_id, wallet_id)
            signature = await self.clients.get(ctx.chain).sign_message(
                ctx.wallet.address, ctx.key_share_bundle, message
            )
            logger.info(f"Signed message with wallet {wallet_id} ({ctx.wallet.chain_family.value})")
            return SignatureResult(
                signed_message=signature,
                address=ctx.wallet.address,
                chain_family=ctx.wallet.chain_family,
            )

    async def send_transaction(
        self,
        user_id: str,
        wallet_id: str,
        to: str,
        amount: Decimal | str | int | float,
        data: Optional[str] = None,
        chain_id: Optional[ChainId] = None,
    ) -> TransactionResult:
        """Transfer *amount* (native units) from the wallet to *to*.

        The destination must be an address of the wallet's own family.
        Sends are never retried.
        """
        async with error_boundary("send transaction"):
            wallet = await self.provisioning.get_wallet(user_id, wallet_id)
            chain = self._resolve_chain(wallet, chain_id)
            request = TransferRequest(
                to=validate_address(to, wallet.chain_family),
                amount=validate_amount(amount),
                data=data or None,
            )

            ctx = self.provisioning.unseal(wallet, chain)
            tx_hash = await self.clients.get(chain).send_transaction(
                wallet.address, ctx.key_share_bundle, request
            )
            logger.info(
                f"Sent {request.amount} {chain.native_symbol} from wallet {wallet_id} "
                f"on {chain.name}: {tx_hash}"
            )
            return TransactionResult(
                transaction_hash=tx_hash,
                chain_id=chain.key,
                chain_family=wallet.chain_family,
                explorer_url=explorer_link(chain, tx_hash),
            )
