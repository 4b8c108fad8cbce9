"""Read-through cache of token metadata (name, symbol, decimals)."""

from __future__ import annotations

import logging
import sqlite3

from wallet_custody.storage.database import Database
from wallet_custody.storage.models import ChainFamily, TokenMetadataRecord
from wallet_custody.wallet.addresses import to_checksum, validate_address
from wallet_custody.wallet.chains import ChainId, ChainMetadata, get_chain
from wallet_custody.wallet.clients import ChainClientFactory

logger = logging.getLogger("wallet_custody.wallet.token_cache")


def native_token_metadata(chain: ChainMetadata, address: str = "") -> TokenMetadataRecord:
    """Synthesized metadata for a chain's native token.  Never cached."""
    return TokenMetadataRecord(
        address=address,
        chain_id=chain.key,
        name=f"{chain.name} Native Token",
        symbol=chain.native_symbol,
        decimals=chain.native_decimals,
    )


class TokenMetadataCache:
    """Token metadata keyed by (contract address, chain id).

    Rows are written once on first lookup and never updated.
    """

    def __init__(self, db: Database, clients: ChainClientFactory) -> None:
        self.db = db
        self.clients = clients

    async def get_token_metadata(
        self,
        contract_address: str,
        chain_id: ChainId | ChainMetadata,
    ) -> TokenMetadataRecord:
        chain = chain_id if isinstance(chain_id, ChainMetadata) else get_chain(chain_id)
        if chain.family is ChainFamily.EVM:
            address = to_checksum(contract_address)
        else:
            address = validate_address(contract_address, chain.family)

        row = await self.db.fetch_one(
            "SELECT address, chain_id, name, symbol, decimals FROM token_metadata "
            "WHERE address = ? AND chain_id = ?",
            (address, chain.key),
        )
        if row is not None:
            return TokenMetadataRecord(**row)

        name, symbol, decimals = await self.clients.get(chain).read_token_metadata(address)
        metadata = TokenMetadataRecord(
            address=address,
            chain_id=chain.key,
            name=name,
            symbol=symbol,
            decimals=decimals,
        )

        try:
            await self.db.execute(
                "INSERT INTO token_metadata (address, chain_id, name, symbol, decimals) "
                "VALUES (?, ?, ?, ?, ?)",
                (metadata.address, metadata.chain_id, metadata.name, metadata.symbol, metadata.decimals),
            )
        except sqlite3.Error as exc:
            # Usually a concurrent lookup for the same token won the insert.
            logger.warning(f"Failed to cache token metadata for {address} on {chain.key}: {exc}")
        else:
            logger.debug(f"Cached token metadata {metadata.symbol} ({address}) on {chain.key}")
        return metadata
