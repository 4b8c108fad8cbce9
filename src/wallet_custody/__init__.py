"""Wallet Custody -- custodial multi-chain wallet orchestration."""

__version__ = "0.1.0"
