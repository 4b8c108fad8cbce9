"""Custodial wallet system.

One wallet per user per chain family (EVM, Solana).  Key generation and
signing happen in the external custody service; this package keeps our half
of each key encrypted, provisions wallets idempotently, and dispatches
balance/sign/send operations to the right chain backend.
"""
