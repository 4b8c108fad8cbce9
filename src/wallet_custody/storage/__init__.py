"""Wallet custody storage layer -- async SQLite database and Pydantic models."""

from wallet_custody.storage.database import Database, get_database
from wallet_custody.storage.models import (
    BalanceResult,
    ChainFamily,
    SignatureResult,
    TokenMetadataRecord,
    TransactionResult,
    TransferRequest,
    WalletRecord,
    WalletView,
    compute_wallet_id,
)

__all__ = [
    "Database",
    "get_database",
    "BalanceResult",
    "ChainFamily",
    "SignatureResult",
    "TokenMetadataRecord",
    "TransactionResult",
    "TransferRequest",
    "WalletRecord",
    "WalletView",
    "compute_wallet_id",
]
