"""Payout math and exactly-once claims."""

from concurrent.futures import ThreadPoolExecutor
from decimal import Decimal

import pytest

from conftest import settle_at
from market.claims import compute_payout
from market.errors import MarketNotSettled, NoPayoutAvailable, NoUnclaimedBet, MarketNotFound
from market.models import Bet, Market, MarketStatus, Side, Winner

ALICE = "0xalice"
BOB = "0xbob"
CAROL = "0xcarol"


def _finished_market(pool_right, pool_wrong, winner, status=MarketStatus.SETTLED):
    market = Market(
        id="m1", market_id=1, asset_type=None, asset_id="pepe", asset_name="PEPE",
        direction=None, threshold_bps=500, start_time=None, lock_time=None, end_time=None,
        pool_right=Decimal(pool_right), pool_wrong=Decimal(pool_wrong),
    )
    market.status = status
    market.winner = winner
    return market


def _bet(side, amount):
    return Bet(id="b1", market_id="m1", user_address=ALICE, side=side, amount=Decimal(amount), ticket_id="11")


# ==================== PAYOUT MATH ====================

def test_winner_payout_example():
    market = _finished_market(600, 400, Winner.RIGHT)
    payout = compute_payout(_bet(Side.RIGHT, 100), market, Decimal("0.02"))
    assert abs(payout - Decimal("163.33")) <= Decimal("0.01")


def test_loser_gets_nothing():
    market = _finished_market(600, 400, Winner.RIGHT)
    assert compute_payout(_bet(Side.WRONG, 100), market, Decimal("0.02")) is None


def test_tie_and_refund_return_stake_exactly():
    tie = _finished_market(600, 400, Winner.TIE)
    refund = _finished_market(600, 400, None, status=MarketStatus.REFUND)
    for market in (tie, refund):
        assert compute_payout(_bet(Side.RIGHT, "123.456789"), market, Decimal("0.02")) == Decimal("123.456789")
        assert compute_payout(_bet(Side.WRONG, 1), market, Decimal("0.02")) == Decimal("1")


def test_winner_payouts_never_exceed_pools():
    market = _finished_market(300, 700, Winner.RIGHT)
    stakes = ["100", "100", "100"]
    total = sum(compute_payout(_bet(Side.RIGHT, s), market, Decimal("0.02")) for s in stakes)
    assert total <= market.total_pool


# ==================== CLAIM FLOW ====================

@pytest.fixture
def settled_market(service, make_market, clock, oracle):
    """600 on RIGHT (ALICE 100, BOB 500), 400 on WRONG (CAROL), oracle right."""
    market = make_market()
    service.ledger.place_bet(market.id, ALICE, Side.RIGHT, 100)
    service.ledger.place_bet(market.id, BOB, Side.RIGHT, 500)
    service.ledger.place_bet(market.id, CAROL, Side.WRONG, 400)
    settled = settle_at(service, clock, oracle, market, "106")
    assert settled.winner == Winner.RIGHT
    return settled


def test_claim_credits_payout(service, settled_market):
    result = service.claims.claim(settled_market.id, ALICE)

    assert abs(result.payout - Decimal("163.33")) <= Decimal("0.01")
    assert result.balance == Decimal("900") + result.payout
    assert result.bets[0].result == "won"
    assert result.bonus_points == 30
    assert service.ledger.get_balance(ALICE) == result.balance


def test_claim_updates_stats(service, settled_market):
    result = service.claims.claim(settled_market.id, ALICE)

    stats = service.stats.get_stats(ALICE)
    assert stats.won_bets == 1
    assert stats.total_winnings == result.payout
    assert stats.points == 100 + 30
    assert stats.current_streak == 1
    assert stats.best_streak == 1


def test_second_claim_is_rejected(service, settled_market):
    service.claims.claim(settled_market.id, ALICE)
    balance = service.ledger.get_balance(ALICE)

    with pytest.raises(NoUnclaimedBet):
        service.claims.claim(settled_market.id, ALICE)
    assert service.ledger.get_balance(ALICE) == balance


def test_loser_claim_is_rejected(service, settled_market):
    with pytest.raises(NoPayoutAvailable):
        service.claims.claim(settled_market.id, CAROL)
    assert service.ledger.get_balance(CAROL) == Decimal("600")


def test_claim_without_bets(service, settled_market):
    with pytest.raises(NoUnclaimedBet):
        service.claims.claim(settled_market.id, "0xnobody")


def test_claim_on_open_market(service, make_market):
    market = make_market()
    service.ledger.place_bet(market.id, ALICE, Side.RIGHT, 10)
    with pytest.raises(MarketNotSettled):
        service.claims.claim(market.id, ALICE)


def test_claim_unknown_market(service):
    with pytest.raises(MarketNotFound):
        service.claims.claim("missing", ALICE)


def test_total_payouts_within_pools(service, settled_market):
    paid = sum(service.claims.claim(settled_market.id, u).payout for u in (ALICE, BOB))
    assert paid <= settled_market.total_pool


def test_tie_refunds_both_sides_exactly(service, make_market, clock, oracle):
    market = make_market()
    service.ledger.place_bet(market.id, ALICE, Side.RIGHT, "33.333333")
    service.ledger.place_bet(market.id, BOB, Side.WRONG, 70)
    settled = settle_at(service, clock, oracle, market, "105.02")
    assert settled.winner == Winner.TIE

    alice = service.claims.claim(market.id, ALICE)
    bob = service.claims.claim(market.id, BOB)

    assert alice.payout == Decimal("33.333333")
    assert bob.payout == Decimal("70")
    assert alice.bonus_points == 0
    assert alice.bets[0].result == "refund"
    assert service.ledger.get_balance(ALICE) == Decimal("1000")
    assert service.stats.get_stats(ALICE).won_bets == 0


def test_refunded_market_is_claimable(service, make_market):
    market = make_market()
    service.ledger.place_bet(market.id, ALICE, Side.RIGHT, 250)
    service.lifecycle.refund(market.id)

    result = service.claims.claim(market.id, ALICE)

    assert result.payout == Decimal("250")
    assert service.ledger.get_balance(ALICE) == Decimal("1000")


def test_claim_covers_every_winning_bet(service, make_market, clock, oracle):
    market = make_market()
    service.ledger.place_bet(market.id, ALICE, Side.RIGHT, 100)
    service.ledger.place_bet(market.id, ALICE, Side.RIGHT, 50)
    service.ledger.place_bet(market.id, ALICE, Side.WRONG, 25)
    settle_at(service, clock, oracle, market, "106")

    result = service.claims.claim(market.id, ALICE)

    assert len(result.bets) == 2
    # The losing bet stays unclaimed and cannot pay out
    with pytest.raises(NoPayoutAvailable):
        service.claims.claim(market.id, ALICE)


def test_concurrent_claims_pay_exactly_once(service, settled_market):
    def attempt(_):
        try:
            return service.claims.claim(settled_market.id, BOB).payout
        except NoUnclaimedBet:
            return None

    with ThreadPoolExecutor(max_workers=8) as pool:
        results = list(pool.map(attempt, range(10)))

    paid = [r for r in results if r is not None]
    assert len(paid) == 1
    assert service.ledger.get_balance(BOB) == Decimal("500") + paid[0]
