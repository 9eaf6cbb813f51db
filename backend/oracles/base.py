"""Price oracle port."""

from decimal import Decimal
from typing import Protocol

from market.models import AssetType


class PriceOracle(Protocol):
    """
    Returns the current price (TOKEN) or floor (NFT) of an asset.
    Raises market.errors.QuoteUnavailable when no usable quote exists.
    """

    def get_quote(self, asset_type: AssetType, asset_id: str) -> Decimal:
        ...
