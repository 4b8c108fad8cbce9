import asyncio
from typing import Optional

import pytest

from wallet_custody.config import (
    CustodyConfig,
    CustodyServiceConfig,
    ProvisioningConfig,
    VaultConfig,
)
from wallet_custody.errors import CustodyServiceError
from wallet_custody.storage.database import Database
from wallet_custody.storage.models import ChainFamily, TransferRequest
from wallet_custody.wallet.clients import ChainClientFactory
from wallet_custody.wallet.clients.base import ChainClient
from wallet_custody.wallet.custody import AccountCreation, reset_custody_client
from wallet_custody.wallet.manager import WalletManager
from wallet_custody.wallet.vault import KeyShareVault

SECRET = "unit-test-encryption-secret-0123456789"
EVM_ADDRESSES = [f"0x{i:040x}" for i in range(1, 50)]
SOLANA_ADDRESSES = [
    "9xQeWvG816bUx9EPjHmaT23yvVM2ZWbrrpZb9PusVFin",
    "TokenkegQfeZyiNwAJbNbGKPFXCWuBvf9Ss623VQ5DA",
    "ATokenGPvbdGVxr1b2hvZbsiqW5xWH25efTNsLJA8knL",
    "So11111111111111111111111111111111111111112",
]
USDC = "0x75faf114eafb1BDbe2F0316DF893fd58CE46AA4d"


@pytest.fixture(autouse=True)
def clean_custody_client():
    """Forget the process-wide custody client between tests."""
    reset_custody_client()
    yield
    reset_custody_client()


class FakeCustody:
    """In-process stand-in for the custody service.

    One account per (user, family).  A second create for the same pair is
    rejected the way the real service does it.  ``create_delay`` keeps the
    winner "in flight" so concurrent callers race realistically.
    """

    def __init__(self, create_delay: float = 0.02):
        self.create_delay = create_delay
        self.accounts: dict[tuple[str, ChainFamily], str] = {}
        self.create_calls = 0
        self.signed: list[tuple] = []
        self.fail_with: Optional[Exception] = None
        self._lock = asyncio.Lock()
        self._next = {ChainFamily.EVM: 0, ChainFamily.SOLANA: 0}

    async def create_account(self, family: ChainFamily, network_id: str, user_id: str) -> AccountCreation:
        self.create_calls += 1
        if self.fail_with is not None:
            raise self.fail_with
        async with self._lock:
            if (user_id, family) in self.accounts:
                raise CustodyServiceError(
                    "You cannot create multiple wallets per chain", status=400
                )
            pool = EVM_ADDRESSES if family is ChainFamily.EVM else SOLANA_ADDRESSES
            address = pool[self._next[family]]
            self._next[family] += 1
            self.accounts[(user_id, family)] = address
        await asyncio.sleep(self.create_delay)
        return AccountCreation(address=address, key_share_bundle=f'["share-{address}"]')

    async def sign_message(self, family, address, key_share_bundle, message):
        self.signed.append(("message", address, key_share_bundle, message))
        return f"sig:{message}"

    async def sign_transaction(self, family, address, key_share_bundle, transaction):
        self.signed.append(("transaction", address, key_share_bundle, transaction))
        return "signed"

    async def aclose(self):
        pass


class FakeChainClient(ChainClient):
    """Chain client with canned balances and call counters."""

    def __init__(self, chain, custody, balances=None, tokens=None):
        super().__init__(chain, custody)
        self.family = chain.family
        self.balances = balances if balances is not None else {}
        self.tokens = tokens if tokens is not None else {}
        self.metadata_calls = 0
        self.sent: list[tuple[str, str, TransferRequest]] = []

    async def get_balance(self, address, token_address=None):
        return self.balances.get((address, token_address), 0)

    async def read_token_metadata(self, token_address):
        self.metadata_calls += 1
        return self.tokens[token_address]

    async def send_transaction(self, address, key_share_bundle, request):
        self.sent.append((address, key_share_bundle, request))
        return f"0x{len(self.sent):064x}"


@pytest.fixture
def config(tmp_path):
    return CustodyConfig(
        database_path=str(tmp_path / "custody.db"),
        vault=VaultConfig(encryption_key=SECRET),
        custody=CustodyServiceConfig(environment_id="env-test", api_token="api-token"),
        provisioning=ProvisioningConfig(requery_attempts=20, requery_delay_seconds=0.02),
    )


@pytest.fixture
def vault():
    return KeyShareVault(SECRET)


@pytest.fixture
async def db(tmp_path):
    database = Database(tmp_path / "custody.db")
    await database.connect()
    yield database
    await database.close()


@pytest.fixture
def custody():
    return FakeCustody()


@pytest.fixture
def fake_clients():
    """chain key -> FakeChainClient, filled lazily by the factory."""
    return {}


@pytest.fixture
def factory(config, custody, fake_clients):
    def build(chain):
        client = FakeChainClient(chain, custody)
        fake_clients[chain.key] = client
        return client

    return ChainClientFactory(
        config,
        custody,
        builders={ChainFamily.EVM: build, ChainFamily.SOLANA: build},
    )


@pytest.fixture
def manager(config, db, vault, factory):
    return WalletManager(config, db, vault, factory)
