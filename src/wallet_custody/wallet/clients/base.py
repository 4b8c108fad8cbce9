"""Abstract chain client: the capabilities every chain family provides."""

from __future__ import annotations

from abc import ABC, abstractmethod
from decimal import ROUND_DOWN, Context, Decimal, InvalidOperation
from typing import Any, Optional

from wallet_custody.errors import InvalidAmount
from wallet_custody.storage.models import ChainFamily, TransferRequest
from wallet_custody.wallet.addresses import is_valid_address
from wallet_custody.wallet.chains import ChainMetadata
from wallet_custody.wallet.custody import AccountCreation, CustodyClient

__all__ = [
    "AccountCreation",
    "ChainClient",
    "TokenInfo",
    "format_units",
    "to_base_units",
    "validate_amount",
]

# Wide enough for uint256 balances.
_UNITS_CONTEXT = Context(prec=100)

# (name, symbol, decimals)
TokenInfo = tuple[str, str, int]


def validate_amount(amount: Any) -> Decimal:
    """Return *amount* as a :class:`Decimal`, rejecting negative or non-finite values."""
    if isinstance(amount, bool):
        raise InvalidAmount(f"Invalid amount: {amount!r}")
    try:
        value = amount if isinstance(amount, Decimal) else Decimal(str(amount))
    except (InvalidOperation, ValueError, TypeError):
        raise InvalidAmount(f"Invalid amount: {amount!r}") from None
    if not value.is_finite() or value < 0:
        raise InvalidAmount(f"Invalid amount: {amount!r}")
    return value


def to_base_units(amount: Decimal, decimals: int) -> int:
    """Convert a human amount to integer base units, truncating extra precision."""
    scaled = amount.scaleb(decimals, context=_UNITS_CONTEXT)
    return int(scaled.to_integral_value(rounding=ROUND_DOWN))


def format_units(raw: int, decimals: int) -> str:
    """Render integer base units as a plain decimal string (``"0"``, ``"1.5"``)."""
    if raw == 0:
        return "0"
    text = format(Decimal(raw).scaleb(-decimals, context=_UNITS_CONTEXT), "f")
    if "." in text:
        text = text.rstrip("0").rstrip(".")
    return text


class ChainClient(ABC):
    """Uniform capability interface over one chain.

    Parameters
    ----------
    chain:
        Registry metadata for the chain this client talks to.
    custody:
        Custody service client used for account creation and signing.
    rpc_url:
        Resolved RPC endpoint (config override, env override or registry
        default).
    """

    family: ChainFamily

    def __init__(
        self,
        chain: ChainMetadata,
        custody: CustodyClient,
        rpc_url: Optional[str] = None,
    ) -> None:
        self.chain = chain
        self.custody = custody
        self.rpc_url = rpc_url or chain.rpc_url

    async def create_account(self, user_id: str) -> AccountCreation:
        """Run the custody key-generation ceremony for *user_id* on this chain's network."""
        return await self.custody.create_account(
            self.family, self.chain.custody_network_id, user_id
        )

    async def sign_message(self, address: str, key_share_bundle: str, message: str) -> str:
        return await self.custody.sign_message(self.family, address, key_share_bundle, message)

    def is_valid_address(self, address: str) -> bool:
        return is_valid_address(address, self.family)

    @abstractmethod
    async def get_balance(self, address: str, token_address: Optional[str] = None) -> int:
        """Balance in base units; native token when *token_address* is omitted."""

    @abstractmethod
    async def send_transaction(
        self,
        address: str,
        key_share_bundle: str,
        request: TransferRequest,
    ) -> str:
        """Sign via custody, broadcast, and return the transaction id."""

    @abstractmethod
    async def read_token_metadata(self, token_address: str) -> TokenInfo:
        """Read ``(name, symbol, decimals)`` for a token on this chain."""

    async def aclose(self) -> None:
        """Release any connections held by the client."""
