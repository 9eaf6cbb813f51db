"""
OpenSea collection floor prices (API v2 collection stats).
"""

import os
import logging
from decimal import Decimal, InvalidOperation
from typing import Optional

import httpx

from market.assets import AssetRegistry
from market.errors import QuoteUnavailable
from market.models import AssetType

logger = logging.getLogger(__name__)

OPENSEA_STATS_URL = "https://api.opensea.io/api/v2/collections/{slug}/stats"


class OpenSeaOracle:
    """Live NFT floor prices, denominated in the collection's floor currency (ETH)."""

    def __init__(
        self,
        registry: AssetRegistry,
        client: Optional[httpx.Client] = None,
        api_key: Optional[str] = None,
        timeout: float = 10.0,
    ):
        self.registry = registry
        self.client = client or httpx.Client(timeout=timeout)
        self.api_key = api_key if api_key is not None else os.getenv("OPENSEA_API_KEY")

    def get_quote(self, asset_type: AssetType, asset_id: str) -> Decimal:
        if asset_type != AssetType.NFT:
            raise QuoteUnavailable(f"OpenSea only quotes NFT floors, got {asset_type.value}")

        asset = self.registry.get(asset_type, asset_id)
        if not asset or not asset.collection_slug:
            raise QuoteUnavailable(f"NFT collection {asset_id} not configured for OpenSea")

        headers = {"Accept": "application/json"}
        if self.api_key:
            headers["X-API-KEY"] = self.api_key

        url = OPENSEA_STATS_URL.format(slug=asset.collection_slug)
        try:
            response = self.client.get(url, headers=headers)
            response.raise_for_status()
            data = response.json()
        except (httpx.HTTPError, ValueError) as e:
            raise QuoteUnavailable(f"OpenSea request failed for {asset_id}: {e}") from e

        total = data.get("total") or {}
        floor = total.get("floor_price")
        if floor is None:
            raise QuoteUnavailable(f"No floor price found for {asset_id}")

        try:
            price = Decimal(str(floor))
        except InvalidOperation as e:
            raise QuoteUnavailable(f"Unparseable floor for {asset_id}: {floor!r}") from e
        if price <= 0:
            raise QuoteUnavailable(f"Non-positive floor for {asset_id}: {price}")

        symbol = total.get("floor_price_symbol") or "ETH"
        logger.info(f"{asset_id} floor price: {price} {symbol}")
        return price
