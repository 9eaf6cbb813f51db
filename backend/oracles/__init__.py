"""
Price Oracles - ProphetX

Quote sources for token prices and NFT collection floors.
"""

from oracles.base import PriceOracle
from oracles.dexscreener import DexScreenerOracle
from oracles.opensea import OpenSeaOracle
from oracles.simulated import (
    SimulatedPriceOracle,
    synthesize_opening_price,
    simulate_settlement_price,
)
from oracles.routing import RoutingPriceOracle, build_price_oracle

__all__ = [
    "PriceOracle",
    "DexScreenerOracle",
    "OpenSeaOracle",
    "SimulatedPriceOracle",
    "RoutingPriceOracle",
    "build_price_oracle",
    "synthesize_opening_price",
    "simulate_settlement_price",
]
