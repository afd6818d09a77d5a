"""Pydantic models for chain data provider responses.

Field aliases match the subgraph schema (camelCase) so GraphQL payloads
validate directly; the same models round-trip through the cache as JSON.
"""

from datetime import date
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class VaultAsset(BaseModel):
    """Underlying ERC-20 asset of a vault."""

    model_config = ConfigDict(populate_by_name=True)

    id: str
    symbol: str
    decimals: int

    @field_validator("id")
    @classmethod
    def _lower_id(cls, v: str) -> str:
        return v.lower()


class VaultStaticData(BaseModel):
    """Vault totals at read time. Big integers are kept as decimal strings."""

    model_config = ConfigDict(populate_by_name=True)

    id: str
    total_assets: str = Field(alias="totalAssets")
    total_supply: str = Field(alias="totalSupply")
    asset: VaultAsset

    @field_validator("id")
    @classmethod
    def _lower_id(cls, v: str) -> str:
        return v.lower()

    @field_validator("total_assets", "total_supply", mode="before")
    @classmethod
    def _as_int_string(cls, v) -> str:
        return str(int(v))


class RawPositionRecord(BaseModel):
    """One holder's share balance in one vault, as reported by a provider."""

    model_config = ConfigDict(populate_by_name=True)

    id: str
    vault: VaultStaticData
    account: str
    shares: str
    last_updated: Optional[str] = Field(default=None, alias="lastUpdated")

    @field_validator("account")
    @classmethod
    def _lower_account(cls, v: str) -> str:
        return v.lower()

    @field_validator("shares", mode="before")
    @classmethod
    def _shares_as_int_string(cls, v) -> str:
        return str(int(v))

    @field_validator("last_updated", mode="before")
    @classmethod
    def _stringify(cls, v):
        return None if v is None else str(v)


class VaultSyncJob(BaseModel):
    """Queue payload for one per-vault sync task."""

    chain: str
    vault_address: str
    snapshot_date: date
    block_number: Optional[int] = None
