"""Chain registry: static metadata for the supported EVM chains and Solana clusters."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional, Union

from wallet_custody.config import CustodyConfig
from wallet_custody.errors import UnsupportedChain
from wallet_custody.storage.models import ChainFamily

ChainId = Union[int, str]


@dataclass(frozen=True)
class ChainMetadata:
    """A blockchain network the custody service can operate on."""

    chain_id: ChainId
    family: ChainFamily
    name: str
    rpc_url: str
    native_symbol: str
    native_decimals: int
    # Network id used when talking to the custody service.  Differs from
    # ``chain_id`` for local dev chains and Solana clusters.
    custody_network_id: str
    explorer_url: str = ""
    aliases: tuple[str, ...] = field(default_factory=tuple)
    is_local: bool = False

    @property
    def key(self) -> str:
        """Canonical string form of the chain id (used as a storage key)."""
        return str(self.chain_id)


def _evm(
    chain_id: int,
    name: str,
    rpc_url: str,
    explorer_url: str,
    native_symbol: str = "ETH",
    custody_network_id: Optional[str] = None,
    is_local: bool = False,
) -> ChainMetadata:
    return ChainMetadata(
        chain_id=chain_id,
        family=ChainFamily.EVM,
        name=name,
        rpc_url=rpc_url,
        native_symbol=native_symbol,
        native_decimals=18,
        custody_network_id=custody_network_id or str(chain_id),
        explorer_url=explorer_url,
        is_local=is_local,
    )


EVM_CHAINS: dict[int, ChainMetadata] = {
    c.chain_id: c
    for c in (
        _evm(1, "Ethereum Mainnet", "https://cloudflare-eth.com", "https://etherscan.io"),
        _evm(11155111, "Ethereum Sepolia", "https://rpc.sepolia.org", "https://sepolia.etherscan.io"),
        _evm(42161, "Arbitrum One", "https://arb1.arbitrum.io/rpc", "https://arbiscan.io"),
        _evm(421614, "Arbitrum Sepolia", "https://sepolia-rollup.arbitrum.io/rpc", "https://sepolia.arbiscan.io"),
        _evm(8453, "Base Mainnet", "https://mainnet.base.org", "https://basescan.org"),
        _evm(84532, "Base Sepolia", "https://sepolia.base.org", "https://sepolia.basescan.org"),
        _evm(10, "Optimism", "https://mainnet.optimism.io", "https://optimistic.etherscan.io"),
        _evm(11155420, "Optimism Sepolia", "https://sepolia.optimism.io", "https://sepolia-optimism.etherscan.io"),
        _evm(137, "Polygon", "https://polygon-rpc.com", "https://polygonscan.com", native_symbol="POL"),
        _evm(80002, "Polygon Amoy", "https://rpc-amoy.polygon.technology", "https://amoy.polygonscan.com", native_symbol="POL"),
        # Local node (anvil/hardhat).  Talks to the custody service as
        # Arbitrum Sepolia so the same network profile can be used in dev.
        _evm(
            31337,
            "Localhost",
            "http://127.0.0.1:8545",
            "",
            custody_network_id="421614",
            is_local=True,
        ),
    )
}

SOLANA_CLUSTERS: dict[str, ChainMetadata] = {
    "mainnet-beta": ChainMetadata(
        chain_id="mainnet-beta",
        family=ChainFamily.SOLANA,
        name="Solana Mainnet",
        rpc_url="https://api.mainnet-beta.solana.com",
        native_symbol="SOL",
        native_decimals=9,
        custody_network_id="solana-mainnet",
        explorer_url="https://explorer.solana.com",
        aliases=("solana-mainnet", "mainnet"),
    ),
    "devnet": ChainMetadata(
        chain_id="devnet",
        family=ChainFamily.SOLANA,
        name="Solana Devnet",
        rpc_url="https://api.devnet.solana.com",
        native_symbol="SOL",
        native_decimals=9,
        custody_network_id="solana-devnet",
        explorer_url="https://explorer.solana.com",
        aliases=("solana-devnet",),
    ),
    "testnet": ChainMetadata(
        chain_id="testnet",
        family=ChainFamily.SOLANA,
        name="Solana Testnet",
        rpc_url="https://api.testnet.solana.com",
        native_symbol="SOL",
        native_decimals=9,
        custody_network_id="solana-testnet",
        explorer_url="https://explorer.solana.com",
        aliases=("solana-testnet",),
    ),
}

_ALIASES: dict[str, ChainMetadata] = {
    alias: chain for chain in SOLANA_CLUSTERS.values() for alias in chain.aliases
}


def get_chain(chain_id: ChainId) -> ChainMetadata:
    """Look up a chain by numeric EVM id, Solana cluster name, or alias.

    Numeric strings (``"421614"``) resolve to EVM chains.  Raises
    :class:`UnsupportedChain` if nothing matches.
    """
    if isinstance(chain_id, bool):
        raise UnsupportedChain(f"Unsupported chain: {chain_id!r}")
    if isinstance(chain_id, int):
        if chain_id in EVM_CHAINS:
            return EVM_CHAINS[chain_id]
    elif isinstance(chain_id, str):
        key = chain_id.strip().lower()
        if key in SOLANA_CLUSTERS:
            return SOLANA_CLUSTERS[key]
        if key in _ALIASES:
            return _ALIASES[key]
        if key.isdigit() and int(key) in EVM_CHAINS:
            return EVM_CHAINS[int(key)]
    raise UnsupportedChain(
        f"Unsupported chain: {chain_id!r}",
        details={"chain_id": str(chain_id)},
    )


def is_supported_chain(chain_id: ChainId) -> bool:
    try:
        get_chain(chain_id)
    except UnsupportedChain:
        return False
    return True


def resolve_family(chain_family: ChainFamily | str) -> ChainFamily:
    """Parse a chain family name, raising :class:`UnsupportedChain` if unknown."""
    try:
        return ChainFamily(str(getattr(chain_family, "value", chain_family)).lower())
    except ValueError:
        raise UnsupportedChain(
            f"Unsupported chain family: {chain_family!r}",
            details={"chain_family": str(chain_family)},
        ) from None


def list_chains(family: ChainFamily | None = None) -> list[ChainMetadata]:
    """Return all registered chains, optionally filtered by family."""
    chains = [*EVM_CHAINS.values(), *SOLANA_CLUSTERS.values()]
    if family is not None:
        chains = [c for c in chains if c.family is family]
    return chains


def default_chain_for_family(config: CustodyConfig, family: ChainFamily) -> ChainMetadata:
    """The chain a family's wallets operate on when no chain id is given.

    ``use_local_blockchain`` routes EVM wallets to the local dev node.
    """
    if family is ChainFamily.EVM and config.use_local_blockchain:
        return EVM_CHAINS[31337]
    configured = config.default_chains.get(family.value)
    if configured is None:
        raise UnsupportedChain(f"No default chain configured for {family.value}")
    chain = get_chain(configured)
    if chain.family is not family:
        raise UnsupportedChain(
            f"Default chain {configured!r} is not a {family.value} chain",
            details={"chain_id": str(configured)},
        )
    return chain
