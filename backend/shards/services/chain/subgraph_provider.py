"""Indexed subgraph implementation of the chain data provider.

Queries one GraphQL subgraph per chain. Position queries page with
first/skip and keep going while pages come back full. Block resolution
uses the shared JSON-RPC binary search.
"""

import time
from typing import Any, Dict, List, Optional

import httpx
import structlog
from pydantic import ValidationError

from shards.core.config import Settings
from shards.core.redis import Cache
from shards.services.chain.base import (
    ELIGIBLE_ASSET_SYMBOLS,
    ChainDataProvider,
    eligible_vaults_key,
    require_supported_chain,
    user_positions_key,
    vault_data_key,
)
from shards.services.chain.blocks import BlockTimestampResolver
from shards.services.chain.models import RawPositionRecord, VaultStaticData
from shards.services.errors import ProviderError, UnsupportedChainError

logger = structlog.get_logger()

VAULT_POSITIONS_PAGE_SIZE = 1000
USER_POSITIONS_PAGE_SIZE = 100

_VAULT_FIELDS = """
    id
    totalAssets
    totalSupply
    asset {
      id
      symbol
      decimals
    }
"""

GET_VAULT_QUERY = """
query GetVault($id: ID!) {
  vault(id: $id) {%s}
}
""" % _VAULT_FIELDS

GET_VAULT_POSITIONS_QUERY = """
query GetVaultPositions($vault: String!, $first: Int!, $skip: Int!, $block: Block_height) {
  vaultPositions(
    first: $first
    skip: $skip
    where: { vault: $vault, shares_gt: "0" }
    block: $block
    orderBy: shares
    orderDirection: desc
  ) {
    id
    vault {%s}
    account
    shares
    lastUpdated
  }
}
""" % _VAULT_FIELDS

GET_USER_POSITIONS_QUERY = """
query GetUserPositions($account: String!, $first: Int!, $skip: Int!, $block: Block_height) {
  vaultPositions(
    first: $first
    skip: $skip
    where: { account: $account, shares_gt: "0" }
    block: $block
    orderBy: shares
    orderDirection: desc
  ) {
    id
    vault {%s}
    account
    shares
    lastUpdated
  }
}
""" % _VAULT_FIELDS

GET_ELIGIBLE_VAULTS_QUERY = """
query GetEligibleVaults($symbols: [String!]) {
  vaults(
    first: 1000
    where: { asset_: { symbol_in: $symbols }, totalAssets_gt: "0" }
    orderBy: totalAssets
    orderDirection: desc
  ) {
    id
    asset {
      symbol
    }
  }
}
"""


class SubgraphChainDataProvider(ChainDataProvider):
    """Chain data from per-chain vault subgraphs."""

    def __init__(
        self,
        settings: Settings,
        cache: Cache,
        block_resolver: BlockTimestampResolver,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.subgraph_urls = settings.subgraph_urls
        self.timeout = httpx.Timeout(settings.provider_timeout_seconds)
        self.vault_data_ttl = settings.vault_data_cache_ttl_seconds
        self.positions_ttl = settings.vault_positions_cache_ttl_seconds
        self.cache = cache
        self.block_resolver = block_resolver
        self._transport = transport

    async def _query(self, chain: str, query: str, variables: Dict[str, Any]) -> Dict[str, Any]:
        """POST a GraphQL query and return its `data` object.

        Raises:
            UnsupportedChainError: chain unknown or has no subgraph URL
            ProviderError: transport failure, HTTP error or GraphQL errors
        """
        require_supported_chain(chain)
        url = self.subgraph_urls.get(chain)
        if not url:
            raise UnsupportedChainError(chain, "no subgraph URL configured")

        start = time.monotonic()
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.post(
                    url,
                    json={"query": query, "variables": variables},
                    headers={"Content-Type": "application/json"},
                )
        except httpx.HTTPError as e:
            logger.error("Subgraph request failed", chain=chain, error=str(e))
            raise ProviderError(f"Subgraph request failed for {chain}: {e}", chain=chain) from e

        if response.status_code != 200:
            logger.error(
                "Subgraph HTTP error",
                chain=chain,
                status=response.status_code,
                body=response.text[:200],
            )
            raise ProviderError(
                f"Subgraph HTTP error {response.status_code} for {chain}",
                chain=chain,
                status_code=response.status_code,
            )

        try:
            payload = response.json()
        except ValueError as e:
            raise ProviderError(f"Subgraph returned malformed JSON for {chain}", chain=chain) from e

        errors = payload.get("errors") or []
        if errors:
            messages = ", ".join(str(err.get("message", err)) for err in errors)
            logger.error("Subgraph query errors", chain=chain, errors=messages)
            raise ProviderError(f"Subgraph errors: {messages}", chain=chain)

        logger.debug(
            "Subgraph query",
            chain=chain,
            latency_ms=round((time.monotonic() - start) * 1000, 1),
        )
        return payload.get("data") or {}

    async def _paginate_positions(
        self,
        chain: str,
        query: str,
        variables: Dict[str, Any],
        page_size: int,
        block_number: Optional[int],
    ) -> List[RawPositionRecord]:
        positions: List[RawPositionRecord] = []
        skip = 0
        while True:
            page_vars = {**variables, "first": page_size, "skip": skip}
            if block_number:
                page_vars["block"] = {"number": block_number}

            data = await self._query(chain, query, page_vars)
            page = data.get("vaultPositions") or []
            try:
                positions.extend(RawPositionRecord.model_validate(item) for item in page)
            except ValidationError as e:
                raise ProviderError(f"Malformed vault position from subgraph: {e}", chain=chain) from e

            if len(page) < page_size:
                break
            skip += page_size

        return [p for p in positions if int(p.shares) > 0]

    async def get_eligible_vaults(self, chain: str) -> List[str]:
        cache_key = eligible_vaults_key(chain)
        cached = await self.cache.get(cache_key)
        if cached is not None:
            return list(cached)

        data = await self._query(chain, GET_ELIGIBLE_VAULTS_QUERY, {"symbols": ELIGIBLE_ASSET_SYMBOLS})
        vault_addresses = [v["id"].lower() for v in data.get("vaults") or [] if v.get("id")]

        await self.cache.set(cache_key, vault_addresses, self.vault_data_ttl)
        logger.info("Eligible vaults fetched", chain=chain, count=len(vault_addresses))
        return vault_addresses

    async def get_vault_data(self, vault_address: str, chain: str) -> Optional[VaultStaticData]:
        cache_key = vault_data_key(chain, vault_address)
        cached = await self.cache.get(cache_key)
        if cached is not None:
            return VaultStaticData.model_validate(cached)

        data = await self._query(chain, GET_VAULT_QUERY, {"id": vault_address.lower()})
        raw_vault = data.get("vault")
        if not raw_vault:
            return None

        try:
            vault = VaultStaticData.model_validate(raw_vault)
        except ValidationError as e:
            raise ProviderError(f"Malformed vault {vault_address} from subgraph: {e}", chain=chain) from e

        await self.cache.set(cache_key, vault.model_dump(by_alias=True), self.vault_data_ttl)
        return vault

    async def get_vault_positions(
        self,
        vault_address: str,
        chain: str,
        block_number: Optional[int] = None,
    ) -> List[RawPositionRecord]:
        positions = await self._paginate_positions(
            chain,
            GET_VAULT_POSITIONS_QUERY,
            {"vault": vault_address.lower()},
            VAULT_POSITIONS_PAGE_SIZE,
            block_number,
        )
        logger.debug("Vault positions fetched", chain=chain, vault=vault_address, count=len(positions))
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

        positions = await self._paginate_positions(
            chain,
            GET_USER_POSITIONS_QUERY,
            {"account": wallet_address.lower()},
            USER_POSITIONS_PAGE_SIZE,
            block_number,
        )

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
