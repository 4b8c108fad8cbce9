"""CustodyRuntime - wires configuration, storage, vault and clients together."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

from wallet_custody.config import (
    CustodyConfig,
    default_config_path,
    load_config,
    save_config,
)
from wallet_custody.storage.database import Database, get_database
from wallet_custody.storage.models import ChainFamily
from wallet_custody.wallet.clients import ChainClientFactory, ClientBuilder
from wallet_custody.wallet.custody import CustodyClient, get_custody_client, reset_custody_client
from wallet_custody.wallet.manager import WalletManager
from wallet_custody.wallet.vault import KeyShareVault

logger = logging.getLogger("wallet_custody.runtime")


class CustodyRuntime:
    """Owns the long-lived pieces of a custody service process.

    Build one with :meth:`load` (from a config file) or :meth:`start` (from
    an in-memory config) and call :meth:`shutdown` when done.
    """

    def __init__(
        self,
        config: CustodyConfig,
        db: Database,
        custody: CustodyClient,
        clients: ChainClientFactory,
        manager: WalletManager,
    ):
        self.config = config
        self.db = db
        self.custody = custody
        self.clients = clients
        self.manager = manager

    @classmethod
    async def start(
        cls,
        config: CustodyConfig,
        base_path: Path | None = None,
        custody: Optional[CustodyClient] = None,
        client_builders: Optional[dict[ChainFamily, ClientBuilder]] = None,
    ) -> CustodyRuntime:
        """Connect storage and build the manager for *config*.

        A relative ``database_path`` is resolved against *base_path*
        (default: the current directory).
        """
        config.require_secrets()
        vault = KeyShareVault(config.vault.encryption_key)

        db_path = Path(config.database_path)
        if not db_path.is_absolute():
            db_path = (base_path or Path.cwd()) / db_path
        db = get_database(db_path)
        await db.connect()

        if custody is None:
            custody = get_custody_client(config.custody)
        clients = ChainClientFactory(config, custody, builders=client_builders)
        manager = WalletManager(config, db, vault, clients)
        logger.info(f"Custody runtime '{config.name}' started (db={db_path})")
        return cls(config=config, db=db, custody=custody, clients=clients, manager=manager)

    @classmethod
    async def load(cls, config_path: Path | None = None) -> CustodyRuntime:
        """Load configuration from *config_path* (default ``.wallet-custody/config.yaml``)."""
        if config_path is None:
            config_path = default_config_path()
        config = load_config(config_path)
        # config.yaml lives in <base>/.wallet-custody/
        base_path = config_path.resolve().parent.parent
        return await cls.start(config, base_path=base_path)

    @staticmethod
    def init(base_path: Path | None = None, name: str = "wallet-custody") -> Path:
        """Write a default config file and return its path."""
        config_path = default_config_path(base_path)
        if config_path.exists():
            raise FileExistsError(f"Configuration already exists at {config_path}")
        save_config(CustodyConfig(name=name), config_path)
        return config_path

    async def shutdown(self) -> None:
        """Clean shutdown."""
        await self.clients.aclose()
        await self.custody.aclose()
        reset_custody_client()
        await self.db.close()
