"""Error taxonomy for the vault sync pipeline.

Vault-not-found and zero-supply vaults are not errors: providers return
None for the former and the orchestrator skips the latter.
"""

from datetime import date
from typing import Optional


class ShardsError(Exception):
    """Base error for the shards backend."""


class ProviderError(ShardsError):
    """Upstream chain-data or price source unreachable or malformed.

    Never retried inside the provider; the task queue owns retries.
    """

    def __init__(
        self,
        message: str,
        chain: Optional[str] = None,
        status_code: Optional[int] = None,
    ):
        super().__init__(message)
        self.chain = chain
        self.status_code = status_code


class UnsupportedChainError(ProviderError):
    """Chain is outside the supported set or has no endpoint configured."""

    def __init__(self, chain: str, detail: str = "unsupported chain"):
        super().__init__(f"{detail}: {chain}", chain=chain)


class PriceUnavailable(ShardsError):
    """A specific token has no USD price at the requested time."""

    def __init__(self, symbol: str, on_date: Optional[date] = None):
        when = f" on {on_date.isoformat()}" if on_date else ""
        super().__init__(f"No USD price available for {symbol}{when}")
        self.symbol = symbol
        self.date = on_date
