import asyncio
import sqlite3

import pytest

from wallet_custody.errors import InvalidAddress
from wallet_custody.storage.database import Database
from wallet_custody.wallet.addresses import to_checksum
from wallet_custody.wallet.chains import get_chain
from wallet_custody.wallet.token_cache import TokenMetadataCache, native_token_metadata

from conftest import USDC


@pytest.fixture
def cache(db, factory):
    return TokenMetadataCache(db, factory)


@pytest.fixture
def evm_client(factory):
    client = factory.get(421614)
    client.tokens[to_checksum(USDC)] = ("USD Coin", "USDC", 6)
    return client


async def test_miss_reads_chain_and_caches(cache, evm_client, db):
    metadata = await cache.get_token_metadata(USDC.lower(), 421614)

    assert metadata.address == to_checksum(USDC)
    assert metadata.chain_id == "421614"
    assert (metadata.name, metadata.symbol, metadata.decimals) == ("USD Coin", "USDC", 6)
    assert evm_client.metadata_calls == 1
    rows = await db.fetch_all("SELECT * FROM token_metadata")
    assert len(rows) == 1


async def test_hit_makes_no_rpc_calls(cache, evm_client):
    first = await cache.get_token_metadata(USDC, "421614")
    second = await cache.get_token_metadata(USDC.lower(), 421614)

    assert second == first
    assert evm_client.metadata_calls == 1


async def test_chain_is_part_of_the_key(cache, evm_client, factory):
    other = factory.get(84532)
    other.tokens[to_checksum(USDC)] = ("Base USDC", "USDC", 6)

    await cache.get_token_metadata(USDC, 421614)
    base = await cache.get_token_metadata(USDC, 84532)

    assert base.name == "Base USDC"
    assert other.metadata_calls == 1


async def test_insert_failure_is_swallowed(cache, evm_client, db, monkeypatch, caplog):
    real_execute = db.execute

    async def failing_execute(sql, params=()):
        if sql.startswith("INSERT INTO token_metadata"):
            raise sqlite3.IntegrityError("UNIQUE constraint failed")
        return await real_execute(sql, params)

    monkeypatch.setattr(db, "execute", failing_execute)

    metadata = await cache.get_token_metadata(USDC, 421614)

    assert metadata.symbol == "USDC"
    assert "Failed to cache token metadata" in caplog.text


async def test_concurrent_misses_agree(cache, evm_client, db):
    results = await asyncio.gather(*(cache.get_token_metadata(USDC, 421614) for _ in range(5)))
    assert len({r.model_dump_json() for r in results}) == 1

    other = Database(db.db_path)
    await other.connect()
    try:
        rows = await other.fetch_all("SELECT address, chain_id FROM token_metadata")
    finally:
        await other.close()
    assert rows == [{"address": to_checksum(USDC), "chain_id": "421614"}]

    calls = evm_client.metadata_calls
    again = await cache.get_token_metadata(USDC, 421614)
    assert again == results[0]
    assert evm_client.metadata_calls == calls


async def test_malformed_address(cache):
    with pytest.raises(InvalidAddress):
        await cache.get_token_metadata("0xnot-an-address", 421614)


def test_native_metadata_is_synthesized():
    evm = native_token_metadata(get_chain(8453))
    sol = native_token_metadata(get_chain("devnet"))

    assert (evm.name, evm.symbol, evm.decimals) == ("Base Mainnet Native Token", "ETH", 18)
    assert (sol.symbol, sol.decimals) == ("SOL", 9)
