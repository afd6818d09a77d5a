"""Vault position snapshot model."""

import uuid
from datetime import date, datetime, timezone
from typing import Any, Dict, Optional

from sqlalchemy import (
    BigInteger,
    Date,
    DateTime,
    Float,
    Index,
    Integer,
    String,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column

from shards.core.database import Base

DEFAULT_LOCK_WEEKS = 4


def to_snapshot_date(value: date) -> date:
    """Truncate a date or datetime to its UTC calendar date.

    Naive datetimes are taken to be UTC already.
    """
    if isinstance(value, datetime):
        if value.tzinfo is not None:
            value = value.astimezone(timezone.utc)
        return value.date()
    return value


class VaultPosition(Base):
    """One wallet's valued stake in one vault at one point in time.

    `balance` and `shares` are arbitrary-precision integers stored as decimal
    strings; `usd_value` is informational only.
    """

    __tablename__ = "vault_positions"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    wallet_address: Mapped[str] = mapped_column(String(42), nullable=False, index=True)
    vault_address: Mapped[str] = mapped_column(String(42), nullable=False, index=True)
    asset_symbol: Mapped[str] = mapped_column(String(16), nullable=False, index=True)
    chain: Mapped[str] = mapped_column(String(20), nullable=False)

    balance: Mapped[str] = mapped_column(String(80), nullable=False, default="0")
    shares: Mapped[str] = mapped_column(String(80), nullable=False, default="0")
    usd_value: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    lock_weeks: Mapped[int] = mapped_column(Integer, nullable=False, default=DEFAULT_LOCK_WEEKS)

    snapshot_date: Mapped[date] = mapped_column(Date, nullable=False, index=True)
    block_number: Mapped[int] = mapped_column(BigInteger, nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    __table_args__ = (
        Index(
            "ix_vault_positions_wallet_vault_chain_date",
            "wallet_address", "vault_address", "chain", "snapshot_date",
            unique=True,
        ),
        Index("ix_vault_positions_chain_date", "chain", "snapshot_date"),
    )

    @classmethod
    def create(
        cls,
        wallet_address: str,
        vault_address: str,
        asset_symbol: str,
        chain: str,
        balance: int,
        shares: int,
        usd_value: float,
        snapshot_date: date,
        block_number: int,
        lock_weeks: int = DEFAULT_LOCK_WEEKS,
        id: Optional[str] = None,
    ) -> "VaultPosition":
        """Build an unsaved snapshot with normalized addresses and date."""
        return cls(
            id=id or str(uuid.uuid4()),
            wallet_address=wallet_address.lower(),
            vault_address=vault_address.lower(),
            asset_symbol=asset_symbol.upper(),
            chain=chain,
            balance=str(balance),
            shares=str(shares),
            usd_value=float(usd_value),
            lock_weeks=lock_weeks,
            snapshot_date=to_snapshot_date(snapshot_date),
            block_number=block_number,
            created_at=datetime.now(timezone.utc),
        )

    def has_balance(self) -> bool:
        return self.balance != "0" and self.shares != "0"

    @property
    def snapshot_date_str(self) -> str:
        return self.snapshot_date.isoformat()

    def is_from_chain(self, chain: str) -> bool:
        return self.chain.lower() == chain.lower()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "wallet_address": self.wallet_address,
            "vault_address": self.vault_address,
            "asset_symbol": self.asset_symbol,
            "chain": self.chain,
            "balance": self.balance,
            "shares": self.shares,
            "usd_value": self.usd_value,
            "lock_weeks": self.lock_weeks,
            "snapshot_date": self.snapshot_date_str,
            "block_number": self.block_number,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self) -> str:
        return (
            f"<VaultPosition {self.wallet_address} {self.vault_address} "
            f"{self.chain} {self.snapshot_date} usd={self.usd_value}>"
        )
