"""Chain data provider interface.

Two variants implement it: an indexed subgraph client and a direct
JSON-RPC client. The orchestrator only sees this interface; the variant is
chosen from settings by the composition root.
"""

from abc import ABC, abstractmethod
from typing import List, Optional

from shards.core.config import SUPPORTED_CHAINS
from shards.services.chain.models import RawPositionRecord, VaultStaticData
from shards.services.errors import UnsupportedChainError

VAULT_DATA_CACHE_PREFIX = "vault-data"
VAULT_POSITIONS_CACHE_PREFIX = "vault-positions"

ELIGIBLE_ASSET_SYMBOLS = ["ETH", "WETH", "USDC", "USDT", "DAI", "WBTC"]


def vault_data_key(chain: str, vault_address: str) -> str:
    return f"{VAULT_DATA_CACHE_PREFIX}:{chain}:{vault_address.lower()}"


def eligible_vaults_key(chain: str) -> str:
    return f"{VAULT_DATA_CACHE_PREFIX}:{chain}:eligible-vaults"


def user_positions_key(chain: str, wallet_address: str) -> str:
    return f"{VAULT_POSITIONS_CACHE_PREFIX}:{chain}:{wallet_address.lower()}"


def require_supported_chain(chain: str) -> str:
    if chain not in SUPPORTED_CHAINS:
        raise UnsupportedChainError(chain)
    return chain


class ChainDataProvider(ABC):
    """Read-side access to vaults and share balances on one or more chains.

    Errors reaching the network surface as ProviderError and are not retried
    here. A vault that cannot be resolved is reported as None, not raised.
    """

    @abstractmethod
    async def get_eligible_vaults(self, chain: str) -> List[str]:
        """Lower-cased addresses of vaults accruing rewards; may be empty."""

    @abstractmethod
    async def get_vault_data(self, vault_address: str, chain: str) -> Optional[VaultStaticData]:
        """Vault totals and underlying asset, or None when the vault is unknown."""

    @abstractmethod
    async def get_vault_positions(
        self,
        vault_address: str,
        chain: str,
        block_number: Optional[int] = None,
    ) -> List[RawPositionRecord]:
        """All holders of a vault with shares > 0, read at block_number when given."""

    @abstractmethod
    async def get_user_vault_positions(
        self,
        wallet_address: str,
        chain: str,
        block_number: Optional[int] = None,
    ) -> List[RawPositionRecord]:
        """A wallet's non-zero positions across vaults, read at block_number when given."""

    @abstractmethod
    async def get_block_by_timestamp(self, chain: str, timestamp: int) -> int:
        """Earliest block whose timestamp is >= the unix timestamp."""
