from decimal import Decimal

import httpx
import pytest

from wallet_custody.errors import (
    CustodyError,
    InsufficientFunds,
    InvalidAddress,
    InvalidAmount,
    UnsupportedChain,
    UpstreamUnavailable,
    WalletNotFound,
)
from wallet_custody.storage.models import ChainFamily
from wallet_custody.wallet.addresses import to_checksum
from wallet_custody.wallet.manager import error_boundary, explorer_link
from wallet_custody.wallet.chains import get_chain

from conftest import SOLANA_ADDRESSES, USDC

EVM_DEST = "0x" + "ab" * 20
SOL_DEST = SOLANA_ADDRESSES[-1]


async def test_create_and_list(manager):
    created = await manager.create_wallet("u1", "evm")
    again = await manager.create_wallet("u1", "evm")

    assert created.is_new and not again.is_new
    assert again.address == created.address
    assert [w.wallet_id for w in await manager.list_wallets("u1")] == [created.wallet_id]


async def test_fresh_wallet_balance_is_zero(manager):
    wallet = await manager.create_wallet("u1", "evm")

    result = await manager.get_balance("u1", wallet.wallet_id)

    assert result.balance == "0"
    assert result.raw_balance == 0
    assert result.chain_id == "421614"
    assert result.token.decimals == 18
    assert result.token.name == "Arbitrum Sepolia Native Token"


async def test_native_balance_formatted(manager, factory):
    wallet = await manager.create_wallet("u1", "solana")
    factory.get("devnet").balances[(wallet.address, None)] = 1_500_000_000

    result = await manager.get_balance("u1", wallet.wallet_id)

    assert result.balance == "1.5"
    assert result.token.symbol == "SOL"


async def test_token_balance_uses_cached_metadata(manager, factory):
    wallet = await manager.create_wallet("u1", "evm")
    client = factory.get(421614)
    token = to_checksum(USDC)
    client.tokens[token] = ("USD Coin", "USDC", 6)
    client.balances[(wallet.address, token)] = 12_340_000

    first = await manager.get_balance("u1", wallet.wallet_id, token_address=USDC)
    second = await manager.get_balance("u1", wallet.wallet_id, token_address=USDC)

    assert first.balance == "12.34"
    assert second == first
    assert client.metadata_calls == 1


async def test_balance_on_explicit_chain(manager, factory):
    wallet = await manager.create_wallet("u1", "evm")
    factory.get(8453).balances[(wallet.address, None)] = 10**18

    result = await manager.get_balance("u1", wallet.wallet_id, chain_id="8453")

    assert result.balance == "1"
    assert result.chain_id == "8453"


async def test_chain_of_other_family_rejected(manager):
    wallet = await manager.create_wallet("u1", "evm")

    with pytest.raises(UnsupportedChain):
        await manager.get_balance("u1", wallet.wallet_id, chain_id="devnet")


async def test_unknown_wallet(manager):
    with pytest.raises(WalletNotFound):
        await manager.get_balance("u1", "00000000-0000-4000-0000-000000000000")


async def test_sign_message(manager, custody):
    wallet = await manager.create_wallet("u1", "solana")

    result = await manager.sign_message("u1", wallet.wallet_id, "hello")

    assert result.signed_message == "sig:hello"
    assert result.chain_family is ChainFamily.SOLANA
    kind, address, bundle, message = custody.signed[0]
    assert address == wallet.address
    assert bundle == f'["share-{wallet.address}"]'


async def test_send_evm(manager, fake_clients):
    wallet = await manager.create_wallet("u1", "evm")

    result = await manager.send_transaction("u1", wallet.wallet_id, EVM_DEST, "0.25")

    address, bundle, request = fake_clients["421614"].sent[0]
    assert address == wallet.address
    assert request.amount == Decimal("0.25")
    assert request.to == to_checksum(EVM_DEST)
    assert result.transaction_hash.startswith("0x")
    assert result.explorer_url == f"https://sepolia.arbiscan.io/tx/{result.transaction_hash}"


async def test_zero_amount_with_data_is_allowed(manager, fake_clients):
    wallet = await manager.create_wallet("u1", "evm")

    await manager.send_transaction("u1", wallet.wallet_id, EVM_DEST, 0, data="0xa9059cbb")

    _, _, request = fake_clients["421614"].sent[0]
    assert request.amount == 0
    assert request.data == "0xa9059cbb"


async def test_evm_wallet_rejects_solana_destination(manager, fake_clients):
    wallet = await manager.create_wallet("u1", "evm")

    with pytest.raises(InvalidAddress):
        await manager.send_transaction("u1", wallet.wallet_id, SOL_DEST, "1")
    assert "421614" not in fake_clients or not fake_clients["421614"].sent


async def test_solana_wallet_rejects_evm_destination(manager):
    wallet = await manager.create_wallet("u1", "solana")

    with pytest.raises(InvalidAddress):
        await manager.send_transaction("u1", wallet.wallet_id, EVM_DEST, "1")


@pytest.mark.parametrize("amount", ["-1", "NaN", "Infinity", "abc"])
async def test_invalid_amounts(manager, amount):
    wallet = await manager.create_wallet("u1", "evm")

    with pytest.raises(InvalidAmount):
        await manager.send_transaction("u1", wallet.wallet_id, EVM_DEST, amount)


async def test_chain_failures_are_classified(manager, factory, monkeypatch):
    wallet = await manager.create_wallet("u1", "evm")
    client = factory.get(421614)

    async def broke(*args, **kwargs):
        raise ValueError("insufficient funds for gas * price + value")

    monkeypatch.setattr(client, "send_transaction", broke)

    with pytest.raises(InsufficientFunds) as excinfo:
        await manager.send_transaction("u1", wallet.wallet_id, EVM_DEST, "5")
    assert excinfo.value.to_response()["error"] == "InsufficientFunds"


async def test_transport_failure_is_upstream(manager, factory, monkeypatch):
    wallet = await manager.create_wallet("u1", "evm")

    async def down(*args, **kwargs):
        raise httpx.ConnectError("connection refused")

    monkeypatch.setattr(factory.get(421614), "get_balance", down)

    with pytest.raises(UpstreamUnavailable):
        await manager.get_balance("u1", wallet.wallet_id)


async def test_error_boundary_converts_everything():
    with pytest.raises(CustodyError) as excinfo:
        async with error_boundary("do a thing"):
            raise KeyError("internal detail")
    assert excinfo.value.kind.value == "Internal"
    assert "internal detail" not in excinfo.value.message


def test_explorer_links():
    assert explorer_link(get_chain("devnet"), "sig") == "https://explorer.solana.com/tx/sig?cluster=devnet"
    assert explorer_link(get_chain("mainnet-beta"), "sig") == "https://explorer.solana.com/tx/sig"
    assert explorer_link(get_chain(31337), "0x1") is None
