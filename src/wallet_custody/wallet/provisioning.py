"""Idempotent wallet provisioning: one wallet per user per chain family.

Creation is optimistic.  We look for an existing row, ask the custody
service for a new account only when there is none, and persist with an
upsert.  When the custody service refuses because the account already
exists (a concurrent request won), we re-read our own table for a short
while before giving up with :class:`WalletConflict`.
"""

from __future__ import annotations

import asyncio
import logging
import sqlite3
from dataclasses import dataclass, field
from typing import Optional

from wallet_custody.config import CustodyConfig
from wallet_custody.errors import WalletConflict, WalletNotFound, is_account_exists_error
from wallet_custody.storage.database import Database
from wallet_custody.storage.models import ChainFamily, WalletRecord, WalletView
from wallet_custody.wallet.chains import ChainMetadata, default_chain_for_family, resolve_family
from wallet_custody.wallet.clients import ChainClientFactory
from wallet_custody.wallet.vault import KeyShareVault

logger = logging.getLogger("wallet_custody.wallet.provisioning")


@dataclass
class SigningContext:
    """Everything one signing operation needs.  Discard after use."""

    wallet: WalletRecord
    key_share_bundle: str = field(repr=False)
    chain: ChainMetadata


class WalletProvisioningService:
    """Creates and looks up wallets in the ``key_shares`` table."""

    def __init__(
        self,
        db: Database,
        vault: KeyShareVault,
        clients: ChainClientFactory,
        config: CustodyConfig,
    ) -> None:
        self.db = db
        self.vault = vault
        self.clients = clients
        self.config = config

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def _find(self, user_id: str, family: ChainFamily) -> Optional[WalletRecord]:
        row = await self.db.fetch_one(
            "SELECT * FROM key_shares WHERE user_id = ? AND chain_family = ?",
            (user_id, family.value),
        )
        return WalletRecord(**row) if row else None

    async def _requery(self, user_id: str, family: ChainFamily) -> Optional[WalletRecord]:
        """Poll for a row written by a concurrent creator."""
        settings = self.config.provisioning
        attempts = max(1, settings.requery_attempts)
        for attempt in range(attempts):
            wallet = await self._find(user_id, family)
            if wallet is not None:
                return wallet
            if attempt < attempts - 1:
                await asyncio.sleep(settings.requery_delay_seconds)
        return None

    async def list_wallets(self, user_id: str) -> list[WalletView]:
        rows = await self.db.fetch_all(
            "SELECT * FROM key_shares WHERE user_id = ? ORDER BY created_at",
            (user_id,),
        )
        return [WalletRecord(**r).to_view() for r in rows]

    async def get_wallet(self, user_id: str, wallet_id: str) -> WalletRecord:
        """Find one of *user_id*'s wallets by its derived id."""
        rows = await self.db.fetch_all(
            "SELECT * FROM key_shares WHERE user_id = ?", (user_id,)
        )
        for row in rows:
            wallet = WalletRecord(**row)
            if wallet.wallet_id == wallet_id:
                return wallet
        raise WalletNotFound(details={"wallet_id": wallet_id})

    async def get_wallet_for_signing(self, user_id: str, wallet_id: str) -> SigningContext:
        wallet = await self.get_wallet(user_id, wallet_id)
        return self.unseal(wallet)

    def unseal(self, wallet: WalletRecord, chain: Optional[ChainMetadata] = None) -> SigningContext:
        """Decrypt *wallet*'s key shares for one operation on *chain* (default: family default)."""
        bundle = self.vault.decrypt_text(wallet.encrypted_key_shares)
        if chain is None:
            chain = default_chain_for_family(self.config, wallet.chain_family)
        return SigningContext(wallet=wallet, key_share_bundle=bundle, chain=chain)

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    async def get_or_create_wallet(self, user_id: str, chain_family: ChainFamily | str) -> WalletView:
        """Return the user's wallet for *chain_family*, creating it if needed.

        Safe to call concurrently: all callers converge on the same wallet
        and exactly one of them sees ``is_new=True``.
        """
        family = resolve_family(chain_family)
        chain = default_chain_for_family(self.config, family)

        existing = await self._find(user_id, family)
        if existing is not None:
            return existing.to_view(is_new=False)

        try:
            account = await self.clients.get(chain).create_account(user_id)
        except Exception as exc:
            if not is_account_exists_error(exc):
                raise
            logger.info(
                f"Custody account already exists for user {user_id} on {family.value}; "
                "re-checking local records"
            )
            wallet = await self._requery(user_id, family)
            if wallet is None:
                logger.error(
                    f"Custody service holds an account for user {user_id} on "
                    f"{family.value} but no key-share record exists"
                )
                raise WalletConflict(
                    details={"user_id": user_id, "chain_family": family.value}
                ) from exc
            return wallet.to_view(is_new=False)

        record = WalletRecord(
            user_id=user_id,
            address=account.address,
            chain_family=family,
            encrypted_key_shares=self.vault.encrypt_text(account.key_share_bundle),
        )
        try:
            await self.db.execute(
                "INSERT INTO key_shares "
                "(user_id, address, chain_family, encrypted_key_shares, created_at) "
                "VALUES (?, ?, ?, ?, ?) "
                "ON CONFLICT (user_id, address, chain_family) "
                "DO UPDATE SET encrypted_key_shares = excluded.encrypted_key_shares",
                (
                    record.user_id,
                    record.address,
                    record.chain_family.value,
                    record.encrypted_key_shares,
                    record.created_at.isoformat(),
                ),
            )
        except sqlite3.IntegrityError as exc:
            # A different address is already stored for this user and family.
            wallet = await self._find(user_id, family)
            if wallet is None:
                raise
            logger.error(
                f"Custody issued a second {family.value} account {account.address} for "
                f"user {user_id}; keeping existing wallet {wallet.address}"
            )
            raise WalletConflict(
                details={"user_id": user_id, "chain_family": family.value}
            ) from exc

        logger.info(f"Created {family.value} wallet {record.address} for user {user_id}")
        return record.to_view(is_new=True)
