import pytest

from wallet_custody.config import CustodyConfig
from wallet_custody.errors import UnsupportedChain
from wallet_custody.storage.models import ChainFamily
from wallet_custody.wallet.chains import (
    default_chain_for_family,
    get_chain,
    is_supported_chain,
    list_chains,
    resolve_family,
)


@pytest.mark.parametrize("chain_id", [1, 11155111, 42161, 421614, 8453, 84532, 10, 11155420, 137, 80002])
def test_evm_chains_registered(chain_id):
    chain = get_chain(chain_id)
    assert chain.family is ChainFamily.EVM
    assert chain.native_decimals == 18
    assert chain.custody_network_id == str(chain_id)


def test_numeric_string_resolves_to_evm():
    assert get_chain("421614") is get_chain(421614)


def test_local_chain_maps_to_arbitrum_sepolia_profile():
    local = get_chain(31337)
    assert local.is_local
    assert local.custody_network_id == "421614"


@pytest.mark.parametrize(
    "alias, cluster, network",
    [
        ("solana-mainnet", "mainnet-beta", "solana-mainnet"),
        ("solana-devnet", "devnet", "solana-devnet"),
        ("solana-testnet", "testnet", "solana-testnet"),
    ],
)
def test_solana_aliases(alias, cluster, network):
    chain = get_chain(alias)
    assert chain is get_chain(cluster)
    assert chain.family is ChainFamily.SOLANA
    assert chain.custody_network_id == network
    assert chain.native_decimals == 9


@pytest.mark.parametrize("chain_id", [999, "polkadot", "", True, None])
def test_unknown_chain(chain_id):
    with pytest.raises(UnsupportedChain):
        get_chain(chain_id)
    assert not is_supported_chain(chain_id)


def test_resolve_family():
    assert resolve_family("EVM") is ChainFamily.EVM
    assert resolve_family(ChainFamily.SOLANA) is ChainFamily.SOLANA
    with pytest.raises(UnsupportedChain):
        resolve_family("bitcoin")


def test_list_chains_filters_by_family():
    solana = list_chains(ChainFamily.SOLANA)
    assert {c.key for c in solana} == {"mainnet-beta", "devnet", "testnet"}
    assert len(list_chains()) == len(solana) + len(list_chains(ChainFamily.EVM))


def test_default_chains():
    config = CustodyConfig()
    assert default_chain_for_family(config, ChainFamily.EVM).chain_id == 421614
    assert default_chain_for_family(config, ChainFamily.SOLANA).chain_id == "devnet"


def test_local_blockchain_switches_evm_default():
    config = CustodyConfig(use_local_blockchain=True)
    assert default_chain_for_family(config, ChainFamily.EVM).chain_id == 31337
    assert default_chain_for_family(config, ChainFamily.SOLANA).chain_id == "devnet"


def test_default_chain_of_wrong_family_rejected():
    config = CustodyConfig(default_chains={"evm": "devnet", "solana": "devnet"})
    with pytest.raises(UnsupportedChain):
        default_chain_for_family(config, ChainFamily.EVM)
