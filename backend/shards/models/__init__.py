"""Database models."""

from shards.models.vault_position import VaultPosition

__all__ = [
    "VaultPosition",
]
