"""Persistence repositories."""

from shards.repositories.vault_position import SnapshotStore, VaultPositionRepository

__all__ = [
    "SnapshotStore",
    "VaultPositionRepository",
]
