"""Chain clients and the factory that hands them out per chain."""

from __future__ import annotations

import logging
from typing import Callable, Optional

from wallet_custody.config import CustodyConfig
from wallet_custody.errors import UnsupportedChain
from wallet_custody.storage.models import ChainFamily
from wallet_custody.wallet.chains import ChainId, ChainMetadata, get_chain
from wallet_custody.wallet.clients.base import AccountCreation, ChainClient, validate_amount
from wallet_custody.wallet.clients.evm import EvmChainClient
from wallet_custody.wallet.clients.solana import SolanaChainClient
from wallet_custody.wallet.custody import CustodyClient

logger = logging.getLogger("wallet_custody.wallet.clients")

CLIENT_CLASSES: dict[ChainFamily, type[ChainClient]] = {
    ChainFamily.EVM: EvmChainClient,
    ChainFamily.SOLANA: SolanaChainClient,
}

ClientBuilder = Callable[[ChainMetadata], ChainClient]


class ChainClientFactory:
    """Creates and caches one :class:`ChainClient` per chain.

    Parameters
    ----------
    config:
        Service configuration (RPC overrides, Solana settings).
    custody:
        Shared custody client handed to every chain client.
    builders:
        Optional per-family overrides, used by tests to substitute fakes.
    """

    def __init__(
        self,
        config: CustodyConfig,
        custody: CustodyClient,
        builders: Optional[dict[ChainFamily, ClientBuilder]] = None,
    ) -> None:
        self.config = config
        self.custody = custody
        self._builders = dict(builders or {})
        self._clients: dict[str, ChainClient] = {}

    def _build(self, chain: ChainMetadata) -> ChainClient:
        if chain.family in self._builders:
            return self._builders[chain.family](chain)

        cls = CLIENT_CLASSES.get(chain.family)
        if cls is None:
            raise UnsupportedChain(f"No client for chain family {chain.family.value}")
        rpc_url = self.config.rpc_url_for(chain.chain_id) or chain.rpc_url
        if cls is SolanaChainClient:
            return SolanaChainClient(chain, self.custody, rpc_url, settings=self.config.solana)
        return cls(chain, self.custody, rpc_url)

    def get(self, chain: ChainMetadata | ChainId) -> ChainClient:
        """Return the (cached) client for *chain*."""
        if not isinstance(chain, ChainMetadata):
            chain = get_chain(chain)
        client = self._clients.get(chain.key)
        if client is None:
            client = self._build(chain)
            self._clients[chain.key] = client
            logger.debug(f"Created {chain.family.value} client for {chain.name}")
        return client

    async def aclose(self) -> None:
        for client in self._clients.values():
            await client.aclose()
        self._clients.clear()


__all__ = [
    "AccountCreation",
    "CLIENT_CLASSES",
    "ChainClient",
    "ChainClientFactory",
    "ClientBuilder",
    "EvmChainClient",
    "SolanaChainClient",
    "validate_amount",
]
