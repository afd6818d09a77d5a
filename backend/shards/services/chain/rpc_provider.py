"""Direct JSON-RPC implementation of the chain data provider.

Reads ERC-4626 style vault contracts with web3.py. Without an index there
is no way to list holders, so `get_vault_positions` discovers accounts by
scanning the vault's ERC-20 Transfer logs over a bounded lookback window
ending at the pinned block, then reads each recipient's balance at that
block. Holders whose last transfer predates the window are missed; chains
that need complete holder coverage should use the subgraph provider.
"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Set

import structlog
from web3 import AsyncWeb3, Web3

from shards.core.config import Settings
from shards.core.redis import Cache
from shards.services.chain.base import (
    ChainDataProvider,
    eligible_vaults_key,
    require_supported_chain,
    user_positions_key,
    vault_data_key,
)
from shards.services.chain.blocks import BlockTimestampResolver
from shards.services.chain.models import RawPositionRecord, VaultAsset, VaultStaticData
from shards.services.chain.web3_pool import ABI_MISMATCH_ERRORS, Web3ClientPool

logger = structlog.get_logger()

ZERO_ADDRESS = "0x" + "0" * 40
TRANSFER_TOPIC = Web3.to_hex(Web3.keccak(text="Transfer(address,address,uint256)"))


def _view(name: str, output_type: str, inputs: Optional[List[Dict[str, str]]] = None) -> Dict[str, Any]:
    return {
        "name": name,
        "type": "function",
        "stateMutability": "view",
        "inputs": inputs or [],
        "outputs": [{"name": "", "type": output_type}],
    }


# ERC-4626 plus the staking-pool variants some reward vaults expose instead
VAULT_ABI: List[Dict[str, Any]] = [
    _view("totalAssets", "uint256"),
    _view("totalStaked", "uint256"),
    _view("totalSupply", "uint256"),
    _view("asset", "address"),
    _view("stakingToken", "address"),
    _view("balanceOf", "uint256", [{"name": "account", "type": "address"}]),
]

ERC20_ABI: List[Dict[str, Any]] = [
    _view("symbol", "string"),
    _view("decimals", "uint8"),
]


class RpcChainDataProvider(ChainDataProvider):
    """Chain data read directly from vault contracts over JSON-RPC."""

    def __init__(
        self,
        settings: Settings,
        cache: Cache,
        clients: Web3ClientPool,
        block_resolver: BlockTimestampResolver,
    ):
        self.settings = settings
        self.cache = cache
        self.clients = clients
        self.block_resolver = block_resolver
        self.vault_data_ttl = settings.vault_data_cache_ttl_seconds
        self.positions_ttl = settings.vault_positions_cache_ttl_seconds
        self.lookback_blocks = settings.rpc_log_lookback_blocks
        self.chunk_size = max(1, settings.rpc_log_chunk_size)

    def _vault_contract(self, w3: AsyncWeb3, vault_address: str):
        return w3.eth.contract(address=Web3.to_checksum_address(vault_address), abi=VAULT_ABI)

    async def _first_supported(self, chain: str, contract, names: List[str], block_identifier) -> Any:
        """Call the first view function in `names` that the contract implements.

        Returns None when none of the variants exist on the contract.
        """
        for name in names:
            fn = getattr(contract.functions, name)()
            try:
                return await self.clients.call(
                    chain, fn.call(block_identifier=block_identifier), f"{name}()"
                )
            except ABI_MISMATCH_ERRORS:
                logger.debug("Vault lacks function, trying next variant", function=name)
        return None

    async def _balance_of(self, chain: str, contract, account: str, block_identifier) -> int:
        fn = contract.functions.balanceOf(Web3.to_checksum_address(account))
        return int(await self.clients.call(chain, fn.call(block_identifier=block_identifier), "balanceOf()"))

    async def get_eligible_vaults(self, chain: str) -> List[str]:
        require_supported_chain(chain)
        cache_key = eligible_vaults_key(chain)
        cached = await self.cache.get(cache_key)
        if cached is not None:
            return list(cached)

        vault_addresses = self.settings.eligible_vaults_for(chain)
        logger.info("Eligible vaults from allow-list", chain=chain, count=len(vault_addresses))

        if vault_addresses:
            await self.cache.set(cache_key, vault_addresses, self.vault_data_ttl)
        return vault_addresses

    async def get_vault_data(
        self,
        vault_address: str,
        chain: str,
        block_number: Optional[int] = None,
    ) -> Optional[VaultStaticData]:
        """Vault totals and underlying asset.

        Pinned reads (block_number given) bypass the cache so that every
        contract read of one snapshot sees the same block.
        """
        cache_key = vault_data_key(chain, vault_address)
        if not block_number:
            cached = await self.cache.get(cache_key)
            if cached is not None:
                return VaultStaticData.model_validate(cached)

        w3 = self.clients.get(chain)
        block_identifier = block_number or "latest"
        vault = self._vault_contract(w3, vault_address)

        total_assets = await self._first_supported(chain, vault, ["totalAssets", "totalStaked"], block_identifier)
        total_supply = await self._first_supported(chain, vault, ["totalSupply", "totalStaked"], block_identifier)
        asset_address = await self._first_supported(chain, vault, ["asset", "stakingToken"], block_identifier)

        if total_assets is None or total_supply is None or asset_address is None:
            logger.warning("Vault does not expose a supported ABI", chain=chain, vault=vault_address)
            return None

        token = w3.eth.contract(address=Web3.to_checksum_address(asset_address), abi=ERC20_ABI)
        symbol = await self._first_supported(chain, token, ["symbol"], block_identifier)
        decimals = await self._first_supported(chain, token, ["decimals"], block_identifier)
        if symbol is None or decimals is None:
            logger.warning("Underlying asset metadata unavailable", chain=chain, asset=asset_address)
            return None

        vault_data = VaultStaticData(
            id=vault_address.lower(),
            total_assets=str(total_assets),
            total_supply=str(total_supply),
            asset=VaultAsset(id=str(asset_address).lower(), symbol=symbol, decimals=int(decimals)),
        )

        if not block_number:
            await self.cache.set(cache_key, vault_data.model_dump(by_alias=True), self.vault_data_ttl)
        return vault_data

    async def _discover_holders(self, chain: str, w3: AsyncWeb3, vault_address: str, to_block: int) -> Set[str]:
        """Recipients of vault-share transfers within the lookback window."""
        holders: Set[str] = set()
        from_block = max(0, to_block - self.lookback_blocks)
        address = Web3.to_checksum_address(vault_address)

        start = from_block
        while start <= to_block:
            end = min(start + self.chunk_size - 1, to_block)
            logs = await self.clients.call(
                chain,
                w3.eth.get_logs({
                    "address": address,
                    "topics": [TRANSFER_TOPIC],
                    "fromBlock": start,
                    "toBlock": end,
                }),
                "eth_getLogs",
            )
            for log in logs:
                topics = log["topics"]
                if len(topics) < 3:
                    continue
                recipient = "0x" + bytes(topics[2])[-20:].hex()
                if recipient != ZERO_ADDRESS:
                    holders.add(recipient.lower())
            start = end + 1

        logger.debug(
            "Transfer log scan complete",
            chain=chain,
            vault=vault_address,
            from_block=from_block,
            to_block=to_block,
            holders=len(holders),
        )
        return holders

    async def get_vault_positions(
        self,
        vault_address: str,
        chain: str,
        block_number: Optional[int] = None,
    ) -> List[RawPositionRecord]:
        w3 = self.clients.get(chain)
        if block_number:
            to_block = block_number
        else:
            to_block = int(await self.clients.call(chain, w3.eth.block_number, "eth_blockNumber"))

        vault_data = await self.get_vault_data(vault_address, chain, to_block)
        if vault_data is None:
            return []

        vault = self._vault_contract(w3, vault_address)
        holders = await self._discover_holders(chain, w3, vault_address, to_block)
        now = datetime.now(timezone.utc).isoformat()

        positions: List[RawPositionRecord] = []
        for holder in sorted(holders):
            shares = await self._balance_of(chain, vault, holder, to_block)
            if shares > 0:
                positions.append(RawPositionRecord(
                    id=f"{vault_address.lower()}-{holder}",
                    vault=vault_data,
                    account=holder,
                    shares=str(shares),
                    last_updated=now,
                ))
        return positions

    async def get_user_vault_positions(
        self,
        wallet_address: str,
        chain: str,
        block_number: Optional[int] = None,
    ) -> List[RawPositionRecord]:
        cache_key = user_positions_key(chain, wallet_address)
        if not block_number:
            cached = await self.cache.get(cache_key)
            if cached is not None:
                return [RawPositionRecord.model_validate(item) for item in cached]

        w3 = self.clients.get(chain)
        block_identifier = block_number or "latest"
        wallet = wallet_address.lower()
        now = datetime.now(timezone.utc).isoformat()

        positions: List[RawPositionRecord] = []
        for vault_address in await self.get_eligible_vaults(chain):
            vault = self._vault_contract(w3, vault_address)
            try:
                shares = await self._balance_of(chain, vault, wallet, block_identifier)
            except ABI_MISMATCH_ERRORS:
                logger.warning("Vault has no balanceOf", chain=chain, vault=vault_address)
                continue
            if shares <= 0:
                continue

            vault_data = await self.get_vault_data(vault_address, chain, block_number)
            if vault_data is None:
                continue
            positions.append(RawPositionRecord(
                id=f"{vault_address.lower()}-{wallet}",
                vault=vault_data,
                account=wallet,
                shares=str(shares),
                last_updated=now,
            ))

        if not block_number:
            await self.cache.set(
                cache_key,
                [p.model_dump(by_alias=True) for p in positions],
                self.positions_ttl,
            )
        return positions

    async def get_block_by_timestamp(self, chain: str, timestamp: int) -> int:
        require_supported_chain(chain)
        return await self.block_resolver.resolve(chain, timestamp)
