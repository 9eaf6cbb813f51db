"""
Simulated quotes.

Used as the oracle in "simulate" data mode and as the fallback whenever a
live quote is unavailable. Never returns zero, so percentage math on the
result is always defined.
"""

import random
from decimal import Decimal
from typing import Dict, Optional

from market.models import AssetType, Direction

# Reference floors in ETH for known collections
NFT_REFERENCE_FLOORS: Dict[str, Decimal] = {
    "pudgy-penguins": Decimal("12.5"),
    "milady": Decimal("3.2"),
    "azuki": Decimal("8.5"),
    "doodles": Decimal("2.8"),
    "cryptopunks": Decimal("45.0"),
    "bored-ape-yacht-club": Decimal("28.0"),
}
DEFAULT_NFT_FLOOR = Decimal("5.0")

PRICE_PLACES = Decimal("0.000001")


def synthesize_opening_price(asset_type: AssetType, asset_id: str, rng: random.Random) -> Decimal:
    """A plausible, strictly positive quote for an asset."""
    if asset_type == AssetType.NFT:
        base = NFT_REFERENCE_FLOORS.get(asset_id, DEFAULT_NFT_FLOOR)
        # +/- 5% around the reference floor
        variation = Decimal(str(rng.uniform(-0.05, 0.05)))
        return (base * (1 + variation)).quantize(PRICE_PLACES)
    # Tokens: between $0.001 and $0.101
    return Decimal(str(rng.uniform(0.001, 0.101))).quantize(PRICE_PLACES)


def simulate_settlement_price(
    price0: Decimal,
    direction: Direction,
    threshold_percent: Decimal,
    seed: str,
) -> Decimal:
    """
    Closing quote that moves in the called direction by 20%-140% of the
    threshold. Seeded so the same market always simulates the same outcome.
    """
    rng = random.Random(seed)
    random_factor = Decimal(str(rng.uniform(-1.0, 1.0)))
    actual_move = threshold_percent * (Decimal("0.8") + random_factor * Decimal("0.6"))
    if direction == Direction.UP:
        price1 = price0 * (1 + actual_move / 100)
    else:
        price1 = price0 * (1 - actual_move / 100)
    # Very wide DOWN thresholds could otherwise cross zero
    return max(price1, PRICE_PLACES)


class SimulatedPriceOracle:
    """Random-walk quotes for simulate mode."""

    def __init__(self, rng: Optional[random.Random] = None):
        self.rng = rng or random.Random()

    def get_quote(self, asset_type: AssetType, asset_id: str) -> Decimal:
        return synthesize_opening_price(asset_type, asset_id, self.rng)
