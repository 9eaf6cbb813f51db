"""Routes quotes to the right source by asset type."""

import logging
from decimal import Decimal
from typing import Dict, Optional

import httpx

from market.assets import AssetRegistry
from market.errors import QuoteUnavailable
from market.models import AssetType, MarketConfig
from oracles.base import PriceOracle
from oracles.dexscreener import DexScreenerOracle
from oracles.opensea import OpenSeaOracle
from oracles.simulated import SimulatedPriceOracle

logger = logging.getLogger(__name__)


class RoutingPriceOracle:
    """TOKEN quotes from one oracle, NFT floors from another."""

    def __init__(self, routes: Dict[AssetType, PriceOracle]):
        self.routes = routes

    def get_quote(self, asset_type: AssetType, asset_id: str) -> Decimal:
        oracle = self.routes.get(asset_type)
        if oracle is None:
            raise QuoteUnavailable(f"No oracle configured for {asset_type.value}")
        return oracle.get_quote(asset_type, asset_id)


def build_price_oracle(
    config: MarketConfig,
    registry: AssetRegistry,
    client: Optional[httpx.Client] = None,
) -> PriceOracle:
    """Live DexScreener/OpenSea routing in "live" mode, simulation otherwise."""
    if config.data_mode != "live":
        logger.info("Price oracle running in simulate mode")
        return SimulatedPriceOracle()

    client = client or httpx.Client(timeout=10.0)
    return RoutingPriceOracle({
        AssetType.TOKEN: DexScreenerOracle(registry, client=client),
        AssetType.NFT: OpenSeaOracle(registry, client=client),
    })
