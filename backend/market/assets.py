"""
Asset Registry - ProphetX

Catalogue of assets the oracle makes daily calls on.
Injected into the lifecycle; the default list can be replaced or extended.
"""

import random
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional

from market.models import AssetType


@dataclass(frozen=True)
class AssetSpec:
    """One tradable asset and where to quote it."""
    asset_type: AssetType
    asset_id: str
    name: str
    logo: Optional[str] = None
    token_address: Optional[str] = None     # DexScreener lookup (TOKEN)
    chain: Optional[str] = None
    collection_slug: Optional[str] = None   # OpenSea lookup (NFT)


DEFAULT_ASSETS = [
    AssetSpec(
        AssetType.TOKEN, "pepe", "PEPE",
        logo="https://assets.coingecko.com/coins/images/29850/small/pepe-token.jpeg",
        token_address="0x6982508145454Ce325dDbE47a25d4ec3d2311933", chain="ethereum",
    ),
    AssetSpec(
        AssetType.TOKEN, "dogwifhat", "WIF",
        logo="https://assets.coingecko.com/coins/images/33566/small/dogwifhat.jpg",
        token_address="EKpQGSJtjMFqKZ9KQanSqYXRcF8fBopzLHYxdM65zcjm", chain="solana",
    ),
    AssetSpec(
        AssetType.TOKEN, "dogecoin", "DOGE",
        logo="https://assets.coingecko.com/coins/images/5/small/dogecoin.png",
        token_address="0xba2ae424d960c26247dd6c32edc70b295c744c43", chain="ethereum",
    ),
    AssetSpec(
        AssetType.TOKEN, "bonk", "BONK",
        logo="https://assets.coingecko.com/coins/images/28600/small/bonk.jpg",
        token_address="DezXAZ8z7PnrnRJjz3wXBoRgixCa6xjnB7YaB1pPB263", chain="solana",
    ),
    AssetSpec(
        AssetType.NFT, "pudgy-penguins", "Pudgy Penguins",
        collection_slug="pudgypenguins",
    ),
    AssetSpec(
        AssetType.NFT, "milady", "Milady",
        collection_slug="milady",
    ),
]


class AssetRegistry:
    """Lookup of AssetSpec by (type, id)."""

    def __init__(self, assets: Iterable[AssetSpec] = None):
        self._assets: Dict[tuple, AssetSpec] = {}
        for asset in (DEFAULT_ASSETS if assets is None else assets):
            self.register(asset)

    def register(self, asset: AssetSpec):
        self._assets[(asset.asset_type, asset.asset_id)] = asset

    def get(self, asset_type: AssetType, asset_id: str) -> Optional[AssetSpec]:
        return self._assets.get((asset_type, asset_id))

    def all(self) -> List[AssetSpec]:
        return list(self._assets.values())

    def pick(self, rng: random.Random) -> AssetSpec:
        assets = self.all()
        if not assets:
            raise LookupError("Asset registry is empty")
        return rng.choice(assets)

    def __len__(self) -> int:
        return len(self._assets)
