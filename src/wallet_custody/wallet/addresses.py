"""Address validation per chain family."""

from __future__ import annotations

import re

from solders.pubkey import Pubkey
from web3 import Web3

from wallet_custody.errors import InvalidAddress
from wallet_custody.storage.models import ChainFamily

_EVM_ADDRESS_RE = re.compile(r"^0x[0-9a-fA-F]{40}$")
_BASE58_RE = re.compile(r"^[1-9A-HJ-NP-Za-km-z]{32,44}$")


def is_evm_address(address: str) -> bool:
    return bool(_EVM_ADDRESS_RE.match(address or ""))


def is_solana_address(address: str) -> bool:
    """True for a base58 string that decodes to a 32-byte public key."""
    if not _BASE58_RE.match(address or ""):
        return False
    try:
        Pubkey.from_string(address)
    except ValueError:
        return False
    return True


def is_valid_address(address: str, family: ChainFamily) -> bool:
    if family is ChainFamily.EVM:
        return is_evm_address(address)
    if family is ChainFamily.SOLANA:
        return is_solana_address(address)
    return False


def validate_address(address: str, family: ChainFamily) -> str:
    """Return *address* normalized for *family*, or raise :class:`InvalidAddress`.

    EVM addresses come back in EIP-55 checksum form.  A well-formed address of
    the other family is rejected with a message naming the expected family.
    """
    if is_valid_address(address, family):
        return to_checksum(address) if family is ChainFamily.EVM else address

    other = ChainFamily.SOLANA if family is ChainFamily.EVM else ChainFamily.EVM
    if is_valid_address(address, other):
        message = f"{other.value} address cannot be used with a {family.value} wallet"
    else:
        message = f"Invalid {family.value} address: {address!r}"
    raise InvalidAddress(message, details={"chain_family": family.value})


def to_checksum(address: str) -> str:
    """EIP-55 checksum form of an EVM address (``InvalidAddress`` if malformed)."""
    if not is_evm_address(address):
        raise InvalidAddress(f"Invalid evm address: {address!r}")
    return Web3.to_checksum_address(address)
