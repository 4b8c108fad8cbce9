import pytest

from wallet_custody.errors import InvalidAddress
from wallet_custody.storage.models import ChainFamily
from wallet_custody.wallet.addresses import (
    is_evm_address,
    is_solana_address,
    to_checksum,
    validate_address,
)

EVM = "0x75faf114eafb1bdbe2f0316df893fd58ce46aa4d"
SOL = "9xQeWvG816bUx9EPjHmaT23yvVM2ZWbrrpZb9PusVFin"


def test_evm_address_checksummed():
    normalized = validate_address(EVM, ChainFamily.EVM)
    assert normalized.lower() == EVM
    assert normalized == to_checksum(EVM.upper().replace("0X", "0x"))


def test_solana_address_kept():
    assert validate_address(SOL, ChainFamily.SOLANA) == SOL


def test_cross_family_rejected_with_family_message():
    with pytest.raises(InvalidAddress, match="solana address cannot be used with a evm wallet"):
        validate_address(SOL, ChainFamily.EVM)
    with pytest.raises(InvalidAddress, match="evm address cannot be used with a solana wallet"):
        validate_address(EVM, ChainFamily.SOLANA)


@pytest.mark.parametrize("address", ["", "0x1234", "0x" + "g" * 40, EVM[2:], EVM + "00"])
def test_malformed_evm(address):
    assert not is_evm_address(address)
    with pytest.raises(InvalidAddress):
        validate_address(address, ChainFamily.EVM)


@pytest.mark.parametrize("address", ["", "0OIl" * 10, SOL[:-5], SOL + "1111"])
def test_malformed_solana(address):
    assert not is_solana_address(address)
