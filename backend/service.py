"""
ProphetX service wiring.

Builds the market core (lifecycle, ledger, claims, stats) around one
database, price oracle and rationale generator. The API and scheduler share
the singleton returned by get_prophet_service().
"""

import logging
import random
from typing import Optional

from agents.rationale import ProphetRationaleGenerator
from market.assets import AssetRegistry
from market.claims import ClaimEngine
from market.clock import Clock, SystemClock
from market.database import MarketDatabase
from market.ledger import PariMutuelLedger
from market.lifecycle import MarketLifecycle
from market.models import MarketConfig
from market.stats import UserStatsService
from oracles import PriceOracle, build_price_oracle

logger = logging.getLogger(__name__)


class ProphetService:
    """All market components over shared storage."""

    def __init__(
        self,
        db: MarketDatabase = None,
        config: MarketConfig = None,
        oracle: PriceOracle = None,
        rationale_generator=None,
        clock: Clock = None,
        registry: AssetRegistry = None,
        rng: random.Random = None,
    ):
        self.config = config or MarketConfig.from_env()
        self.db = db or MarketDatabase()
        self.clock = clock or SystemClock()
        self.registry = registry or AssetRegistry()
        self.oracle = oracle or build_price_oracle(self.config, self.registry)
        self.rationale_generator = rationale_generator or ProphetRationaleGenerator()

        self.lifecycle = MarketLifecycle(
            self.db,
            self.oracle,
            self.rationale_generator,
            config=self.config,
            clock=self.clock,
            registry=self.registry,
            rng=rng,
        )
        self.ledger = PariMutuelLedger(self.db, config=self.config, clock=self.clock)
        self.claims = ClaimEngine(self.db, config=self.config)
        self.stats = UserStatsService(self.db, config=self.config)

        logger.info(f"ProphetService ready (data_mode={self.config.data_mode})")


# Singleton instance
_prophet_service: Optional[ProphetService] = None


def get_prophet_service() -> ProphetService:
    """Get the singleton service instance."""
    global _prophet_service
    if _prophet_service is None:
        _prophet_service = ProphetService()
    return _prophet_service


def set_prophet_service(service: Optional[ProphetService]):
    """Replace the singleton (tests, alternate wiring)."""
    global _prophet_service
    _prophet_service = service
