"""Price clients against mocked HTTP, plus simulation helpers."""

import random
from decimal import Decimal

import httpx
import pytest

from market.assets import AssetRegistry
from market.errors import QuoteUnavailable
from market.models import AssetType, Direction, MarketConfig
from oracles import (
    DexScreenerOracle, OpenSeaOracle, RoutingPriceOracle, SimulatedPriceOracle,
    build_price_oracle, simulate_settlement_price, synthesize_opening_price,
)
from oracles.dexscreener import best_pair


def _client(handler):
    return httpx.Client(transport=httpx.MockTransport(handler))


# ==================== DEXSCREENER ====================

def test_best_pair_by_liquidity():
    pairs = [
        {"priceUsd": "1", "liquidity": {"usd": 10}},
        {"priceUsd": "2", "liquidity": {"usd": 500}},
        {"priceUsd": "3"},
    ]
    assert best_pair(pairs)["priceUsd"] == "2"
    assert best_pair([]) is None


def test_dexscreener_quote_uses_deepest_pair():
    seen = []

    def handler(request):
        seen.append(str(request.url))
        return httpx.Response(200, json={"pairs": [
            {"priceUsd": "0.0000101", "liquidity": {"usd": 1000}, "dexId": "uniswap", "chainId": "ethereum"},
            {"priceUsd": "0.0000099", "liquidity": {"usd": 5_000_000}, "dexId": "uniswap", "chainId": "ethereum"},
        ]})

    oracle = DexScreenerOracle(AssetRegistry(), client=_client(handler))

    assert oracle.get_quote(AssetType.TOKEN, "pepe") == Decimal("0.0000099")
    assert seen[0].endswith("/latest/dex/tokens/0x6982508145454Ce325dDbE47a25d4ec3d2311933")


@pytest.mark.parametrize("response", [
    httpx.Response(200, json={"pairs": []}),
    httpx.Response(200, json={"pairs": None}),
    httpx.Response(200, json={"pairs": [{"priceUsd": "0", "liquidity": {"usd": 1}}]}),
    httpx.Response(500, text="boom"),
    httpx.Response(200, text="not json"),
])
def test_dexscreener_failures_raise_quote_unavailable(response):
    oracle = DexScreenerOracle(AssetRegistry(), client=_client(lambda request: response))
    with pytest.raises(QuoteUnavailable):
        oracle.get_quote(AssetType.TOKEN, "pepe")


def test_dexscreener_network_error():
    def handler(request):
        raise httpx.ConnectError("unreachable", request=request)

    oracle = DexScreenerOracle(AssetRegistry(), client=_client(handler))
    with pytest.raises(QuoteUnavailable):
        oracle.get_quote(AssetType.TOKEN, "pepe")


def test_dexscreener_unknown_asset():
    oracle = DexScreenerOracle(AssetRegistry(), client=_client(lambda r: httpx.Response(200, json={})))
    with pytest.raises(QuoteUnavailable):
        oracle.get_quote(AssetType.TOKEN, "not-a-token")
    with pytest.raises(QuoteUnavailable):
        oracle.get_quote(AssetType.NFT, "milady")


# ==================== OPENSEA ====================

def test_opensea_floor_price_with_api_key():
    headers = {}

    def handler(request):
        headers["api_key"] = request.headers.get("x-api-key")
        assert request.url.path == "/api/v2/collections/pudgypenguins/stats"
        return httpx.Response(200, json={"total": {"floor_price": 11.25, "floor_price_symbol": "ETH"}})

    oracle = OpenSeaOracle(AssetRegistry(), client=_client(handler), api_key="secret")

    assert oracle.get_quote(AssetType.NFT, "pudgy-penguins") == Decimal("11.25")
    assert headers["api_key"] == "secret"


def test_opensea_missing_floor():
    oracle = OpenSeaOracle(
        AssetRegistry(), client=_client(lambda r: httpx.Response(200, json={"total": {}})), api_key=""
    )
    with pytest.raises(QuoteUnavailable):
        oracle.get_quote(AssetType.NFT, "milady")


# ==================== ROUTING & SIMULATION ====================

def test_routing_by_asset_type():
    class Fixed:
        def __init__(self, price):
            self.price = Decimal(price)

        def get_quote(self, asset_type, asset_id):
            return self.price

    oracle = RoutingPriceOracle({AssetType.TOKEN: Fixed("1.5")})

    assert oracle.get_quote(AssetType.TOKEN, "pepe") == Decimal("1.5")
    with pytest.raises(QuoteUnavailable):
        oracle.get_quote(AssetType.NFT, "milady")


def test_build_price_oracle_modes():
    registry = AssetRegistry()
    assert isinstance(build_price_oracle(MarketConfig(data_mode="simulate"), registry), SimulatedPriceOracle)

    live = build_price_oracle(MarketConfig(data_mode="live"), registry, client=_client(lambda r: httpx.Response(404)))
    assert isinstance(live, RoutingPriceOracle)


def test_synthesized_prices_are_positive():
    rng = random.Random(0)
    for _ in range(50):
        assert synthesize_opening_price(AssetType.TOKEN, "pepe", rng) > 0
        assert synthesize_opening_price(AssetType.NFT, "milady", rng) > 0


def test_settlement_simulation_is_seeded():
    a = simulate_settlement_price(Decimal("100"), Direction.UP, Decimal("5"), seed="market-a")
    b = simulate_settlement_price(Decimal("100"), Direction.UP, Decimal("5"), seed="market-a")
    assert a == b


@pytest.mark.parametrize("direction", [Direction.UP, Direction.DOWN])
def test_settlement_simulation_range(direction):
    # Move is between 20% and 140% of the threshold in the called direction
    for seed in range(30):
        price1 = simulate_settlement_price(Decimal("100"), direction, Decimal("5"), seed=str(seed))
        move = abs(price1 - Decimal("100"))
        assert Decimal("1") - Decimal("0.000001") <= move <= Decimal("7") + Decimal("0.000001")
        assert (price1 > 100) == (direction == Direction.UP)
