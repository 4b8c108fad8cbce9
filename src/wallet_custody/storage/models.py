"""Pydantic models mapping to the wallet custody tables and operation results."""

from __future__ import annotations

import hashlib
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Optional, Union

from pydantic import BaseModel, Field


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------

class ChainFamily(str, Enum):
    EVM = "evm"
    SOLANA = "solana"


ChainId = Union[int, str]


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def compute_wallet_id(user_id: str, address: str, chain_family: ChainFamily | str) -> str:
    """Derive the stable wallet id for a (user, address, family) triple.

    SHA-256 of ``"{user_id}:{address}:{family}"`` laid out as a UUID-shaped
    string with a ``4`` version nibble.
    """
    family = ChainFamily(chain_family).value
    digest = hashlib.sha256(f"{user_id}:{address}:{family}".encode("utf-8")).hexdigest()
    return (
        f"{digest[0:8]}-{digest[8:12]}-4{digest[13:16]}-"
        f"{digest[16:20]}-{digest[20:32]}"
    )


# ---------------------------------------------------------------------------
# Record models
# ---------------------------------------------------------------------------

class WalletRecord(BaseModel):
    """Maps to the ``key_shares`` table."""

    user_id: str
    address: str
    chain_family: ChainFamily
    encrypted_key_shares: str = Field(repr=False)
    created_at: datetime = Field(default_factory=_utcnow)

    @property
    def wallet_id(self) -> str:
        return compute_wallet_id(self.user_id, self.address, self.chain_family)

    def to_view(self, is_new: bool = False) -> WalletView:
        return WalletView(
            wallet_id=self.wallet_id,
            address=self.address,
            chain_family=self.chain_family,
            is_new=is_new,
            created_at=self.created_at,
        )


class TokenMetadataRecord(BaseModel):
    """Maps to the ``token_metadata`` table.

    Native-token records are synthesized on the fly and never stored.
    """

    address: str
    chain_id: str
    name: str
    symbol: str
    decimals: int


# ---------------------------------------------------------------------------
# Operation models
# ---------------------------------------------------------------------------

class WalletView(BaseModel):
    """What callers see of a wallet: no key material."""

    wallet_id: str
    address: str
    chain_family: ChainFamily
    is_new: bool = False
    created_at: Optional[datetime] = None


class TransferRequest(BaseModel):
    to: str
    amount: Decimal
    data: Optional[str] = None


class BalanceResult(BaseModel):
    balance: str            # human units, decimal string
    raw_balance: int        # base units (wei, lamports, token units)
    chain_id: str
    chain_family: ChainFamily
    token: TokenMetadataRecord


class SignatureResult(BaseModel):
    signed_message: str
    address: str
    chain_family: ChainFamily


class TransactionResult(BaseModel):
    transaction_hash: str
    chain_id: str
    chain_family: ChainFamily
    explorer_url: Optional[str] = None
