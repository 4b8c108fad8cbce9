"""EVM chain client built on web3's async provider."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Optional

from eth_account import Account
from web3 import AsyncWeb3, Web3
from web3.middleware import ExtraDataToPOAMiddleware

from wallet_custody.errors import InternalError
from wallet_custody.storage.models import ChainFamily, TransferRequest
from wallet_custody.wallet.addresses import to_checksum, validate_address
from wallet_custody.wallet.chains import ChainMetadata
from wallet_custody.wallet.clients.base import (
    ChainClient,
    TokenInfo,
    to_base_units,
    validate_amount,
)
from wallet_custody.wallet.custody import CustodyClient

logger = logging.getLogger("wallet_custody.wallet.clients.evm")

# Minimal ERC-20 ABI: the read methods the custody service needs.
ERC20_ABI: list[dict[str, Any]] = [
    {
        "constant": True,
        "inputs": [{"name": "owner", "type": "address"}],
        "name": "balanceOf",
        "outputs": [{"name": "", "type": "uint256"}],
        "stateMutability": "view",
        "type": "function",
    },
    {
        "constant": True,
        "inputs": [],
        "name": "name",
        "outputs": [{"name": "", "type": "string"}],
        "stateMutability": "view",
        "type": "function",
    },
    {
        "constant": True,
        "inputs": [],
        "name": "symbol",
        "outputs": [{"name": "", "type": "string"}],
        "stateMutability": "view",
        "type": "function",
    },
    {
        "constant": True,
        "inputs": [],
        "name": "decimals",
        "outputs": [{"name": "", "type": "uint8"}],
        "stateMutability": "view",
        "type": "function",
    },
]

PRIORITY_FEE_GWEI = 1.5


class EvmChainClient(ChainClient):
    """Balance reads, custody signing and broadcast for one EVM chain."""

    family = ChainFamily.EVM

    def __init__(
        self,
        chain: ChainMetadata,
        custody: CustodyClient,
        rpc_url: Optional[str] = None,
        w3: Optional[AsyncWeb3] = None,
    ) -> None:
        super().__init__(chain, custody, rpc_url)
        self._w3 = w3

    @property
    def w3(self) -> AsyncWeb3:
        """The (cached) AsyncWeb3 instance for this chain.

        Injects POA middleware for non-mainnet chains.
        """
        if self._w3 is None:
            w3 = AsyncWeb3(AsyncWeb3.AsyncHTTPProvider(self.rpc_url))
            # Base, Arbitrum, Polygon and the testnets carry extra header data
            if self.chain.chain_id != 1:
                w3.middleware_onion.inject(ExtraDataToPOAMiddleware, layer=0)
            self._w3 = w3
        return self._w3

    def _erc20(self, token_address: str):
        return self.w3.eth.contract(address=to_checksum(token_address), abi=ERC20_ABI)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get_balance(self, address: str, token_address: Optional[str] = None) -> int:
        owner = to_checksum(address)
        if token_address is None:
            return int(await self.w3.eth.get_balance(owner))
        return int(await self._erc20(token_address).functions.balanceOf(owner).call())

    async def read_token_metadata(self, token_address: str) -> TokenInfo:
        contract = self._erc20(token_address)
        name, symbol, decimals = await asyncio.gather(
            contract.functions.name().call(),
            contract.functions.symbol().call(),
            contract.functions.decimals().call(),
        )
        return str(name), str(symbol), int(decimals)

    # ------------------------------------------------------------------
    # Transactions
    # ------------------------------------------------------------------

    async def build_transaction(self, sender: str, request: TransferRequest) -> dict:
        """Build an unsigned native transfer (optionally carrying calldata).

        Uses EIP-1559 fee parameters when the latest block reports a base
        fee, and a legacy gas price otherwise.
        """
        amount = validate_amount(request.amount)
        to_address = validate_address(request.to, ChainFamily.EVM)
        from_address = to_checksum(sender)

        tx: dict[str, Any] = {
            "from": from_address,
            "to": to_address,
            "value": to_base_units(amount, self.chain.native_decimals),
            "nonce": await self.w3.eth.get_transaction_count(from_address),
            "chainId": int(self.chain.chain_id),
        }
        if request.data:
            tx["data"] = request.data if request.data.startswith("0x") else f"0x{request.data}"

        latest = await self.w3.eth.get_block("latest")
        base_fee = latest.get("baseFeePerGas")
        if base_fee is not None:
            max_priority = Web3.to_wei(PRIORITY_FEE_GWEI, "gwei")
            tx["maxFeePerGas"] = base_fee * 2 + max_priority
            tx["maxPriorityFeePerGas"] = max_priority
        else:
            tx["gasPrice"] = await self.w3.eth.gas_price
        tx["gas"] = await self.w3.eth.estimate_gas(tx)
        return tx

    async def send_transaction(
        self,
        address: str,
        key_share_bundle: str,
        request: TransferRequest,
    ) -> str:
        tx = await self.build_transaction(address, request)
        signed_raw = await self.custody.sign_transaction(
            self.family, address, key_share_bundle, tx
        )

        # The custody service must have signed for the wallet we asked about.
        signer = Account.recover_transaction(signed_raw)
        if signer.lower() != address.lower():
            logger.error(
                f"Custody signed transaction for {signer}, expected {address} "
                f"on chain {self.chain.chain_id}"
            )
            raise InternalError("Signed transaction does not match the wallet address")

        tx_hash = await self.w3.eth.send_raw_transaction(signed_raw)
        tx_hex = Web3.to_hex(tx_hash)
        logger.info(
            f"Broadcast {request.amount} {self.chain.native_symbol} from {address} "
            f"to {tx['to']} on {self.chain.name}: {tx_hex}"
        )
        return tx_hex

    async def aclose(self) -> None:
        if self._w3 is not None:
            provider = self._w3.provider
            disconnect = getattr(provider, "disconnect", None)
            if disconnect is not None:
                await disconnect()
