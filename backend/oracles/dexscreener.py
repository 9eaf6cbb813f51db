"""
DexScreener token quotes.

Free API, no key required. The pair with the deepest USD liquidity is taken
as the reference price.
"""

import logging
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Optional

import httpx

from market.assets import AssetRegistry
from market.errors import QuoteUnavailable
from market.models import AssetType

logger = logging.getLogger(__name__)

DEXSCREENER_URL = "https://api.dexscreener.com/latest/dex/tokens/{address}"


def best_pair(pairs: List[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    """Pair with the highest liquidity.usd, or None for an empty list."""
    if not pairs:
        return None
    return max(pairs, key=lambda p: (p.get("liquidity") or {}).get("usd") or 0)


class DexScreenerOracle:
    """Live token prices in USD."""

    def __init__(
        self,
        registry: AssetRegistry,
        client: Optional[httpx.Client] = None,
        timeout: float = 10.0,
    ):
        self.registry = registry
        self.client = client or httpx.Client(timeout=timeout)

    def get_quote(self, asset_type: AssetType, asset_id: str) -> Decimal:
        if asset_type != AssetType.TOKEN:
            raise QuoteUnavailable(f"DexScreener only quotes tokens, got {asset_type.value}")

        asset = self.registry.get(asset_type, asset_id)
        if not asset or not asset.token_address:
            raise QuoteUnavailable(f"Token {asset_id} not configured for DexScreener")

        url = DEXSCREENER_URL.format(address=asset.token_address)
        logger.debug(f"Fetching price for {asset_id} from DexScreener: {url}")

        try:
            response = self.client.get(url)
            response.raise_for_status()
            data = response.json()
        except (httpx.HTTPError, ValueError) as e:
            raise QuoteUnavailable(f"DexScreener request failed for {asset_id}: {e}") from e

        pair = best_pair(data.get("pairs") or [])
        if not pair or not pair.get("priceUsd"):
            raise QuoteUnavailable(f"No pairs found for {asset_id}")

        try:
            price = Decimal(str(pair["priceUsd"]))
        except InvalidOperation as e:
            raise QuoteUnavailable(f"Unparseable price for {asset_id}: {pair['priceUsd']!r}") from e
        if price <= 0:
            raise QuoteUnavailable(f"Non-positive price for {asset_id}: {price}")

        logger.info(f"{asset_id} price: ${price} (from {pair.get('dexId')} on {pair.get('chainId')})")
        return price
