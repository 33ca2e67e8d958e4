"""Wallet utilities for loading the operating keypair."""

from __future__ import annotations

import base58
from solders.keypair import Keypair

from autopump.errors import ConfigurationError


def load_keypair_from_secret(secret: str) -> Keypair:
    """
    Decode a base58 64-byte secret key into a Keypair.

    The secret is never included in the raised error.
    """
    try:
        raw = base58.b58decode(secret.strip())
    except ValueError:
        raise ConfigurationError("Failed to decode wallet secret: not valid base58")
    if len(raw) != 64:
        raise ConfigurationError(
            f"Failed to decode wallet secret: expected 64 bytes, got {len(raw)}",
            {"length": len(raw)},
        )
    try:
        return Keypair.from_bytes(raw)
    except ValueError:
        raise ConfigurationError("Failed to decode wallet secret: not a valid ed25519 keypair")
