"""Custodial wallet system for Crypto Mail Agent.

Every user gets one primary Ethereum-compatible wallet whose private key is
generated server-side and stored AES-256-GCM encrypted. Transfers are written
to the ledger as ``pending`` before they are broadcast, then settled exactly
once as ``confirmed`` or ``failed``.
"""
