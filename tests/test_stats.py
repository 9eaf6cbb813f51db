"""Points, leaderboard and referrals."""

import random
from decimal import Decimal

import pytest

from market.errors import InvalidAmount, InvalidReferral
from market.stats import UserStatsService, REFERRAL_ALPHABET

ALICE = "0xalice"
BOB = "0xbob"


def test_unknown_user_has_empty_stats(service):
    stats = service.stats.get_stats("0xNew")
    assert stats.user_address == "0xnew"
    assert stats.points == 0
    assert stats.win_rate == 0.0


def test_increment_points_and_volume(service):
    service.stats.increment_points(ALICE, 12)
    service.stats.increment_volume(ALICE, Decimal("3.5"))

    stats = service.stats.get_stats(ALICE)
    assert stats.points == 12
    assert stats.volume_traded == Decimal("3.5")


def test_negative_increments_are_rejected(service):
    with pytest.raises(InvalidAmount):
        service.stats.increment_points(ALICE, -1)
    with pytest.raises(InvalidAmount):
        service.stats.increment_volume(ALICE, Decimal("-1"))


def test_leaderboard_orders_by_points(service):
    service.stats.increment_points(ALICE, 5)
    service.stats.increment_points(BOB, 50)
    service.stats.increment_points("0xcarol", 20)

    board = service.stats.leaderboard(limit=2)

    assert [e["user_address"] for e in board] == [BOB, "0xcarol"]
    assert [e["rank"] for e in board] == [1, 2]


def test_referral_code_is_stable(service):
    code = service.stats.generate_referral_code(ALICE)

    assert len(code) == 8
    assert all(c in REFERRAL_ALPHABET for c in code)
    assert service.stats.generate_referral_code(ALICE) == code
    assert service.stats.get_stats(ALICE).referral_code == code


def test_apply_referral_awards_both_users(service):
    code = service.stats.generate_referral_code(ALICE)

    result = service.stats.apply_referral_code(BOB, code.lower())

    assert result["referrer"] == ALICE
    alice, bob = service.stats.get_stats(ALICE), service.stats.get_stats(BOB)
    assert alice.points == 50
    assert alice.referral_count == 1
    assert bob.points == 10
    assert bob.referred_by == ALICE


def test_referral_only_once(service):
    code = service.stats.generate_referral_code(ALICE)
    service.stats.apply_referral_code(BOB, code)

    with pytest.raises(InvalidReferral):
        service.stats.apply_referral_code(BOB, code)
    assert service.stats.get_stats(ALICE).points == 50


def test_self_referral_is_rejected(service):
    code = service.stats.generate_referral_code(ALICE)
    with pytest.raises(InvalidReferral):
        service.stats.apply_referral_code(ALICE, code)


@pytest.mark.parametrize("code", ["", "NOPE1234"])
def test_unknown_referral_code(service, code):
    with pytest.raises(InvalidReferral):
        service.stats.apply_referral_code(BOB, code)


def test_referral_code_collision_retries(db, config):
    # Both generators draw the same first code; the second must pick another
    first = UserStatsService(db, config, rng=random.Random(3))
    second = UserStatsService(db, config, rng=random.Random(3))

    code_a = first.generate_referral_code(ALICE)
    code_b = second.generate_referral_code(BOB)

    assert code_a != code_b
