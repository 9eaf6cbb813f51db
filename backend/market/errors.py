"""
Market Errors - ProphetX

Exception taxonomy for the prediction market core.
Every error carries the HTTP status the API layer should answer with.
"""

from decimal import Decimal
from typing import Optional


class MarketError(Exception):
    """Base class for all rejections raised by the market core."""
    status_code = 400

    def __init__(self, message: str = ""):
        super().__init__(message or self.__class__.__name__)
        self.message = message or self.__class__.__name__


# ==================== VALIDATION ====================

class ValidationError(MarketError):
    """Bad input, rejected before any mutation."""
    status_code = 422


class InvalidAmount(ValidationError):
    pass


class InvalidSide(ValidationError):
    pass


class InvalidDirection(ValidationError):
    pass


class InvalidMarketWindow(ValidationError):
    pass


class InvalidReferral(ValidationError):
    pass


# ==================== STATE ====================

class StateError(MarketError):
    """The entity is not in a state that allows the operation."""
    status_code = 409


class MarketNotFound(StateError):
    status_code = 404


class MarketLocked(StateError):
    pass


class MarketNotOpen(StateError):
    pass


class MarketNotSettled(StateError):
    pass


class NoUnclaimedBet(StateError):
    status_code = 404


class NoPayoutAvailable(StateError):
    pass


class InvalidTransition(StateError):
    pass


# ==================== RESOURCES ====================

class ResourceError(MarketError):
    """User-actionable shortage (balance, caps)."""
    status_code = 400


class InsufficientBalance(ResourceError):
    pass


class LimitExceeded(ResourceError):

    def __init__(self, message: str = "", current_balance: Optional[Decimal] = None):
        super().__init__(message)
        self.current_balance = current_balance


# ==================== DEPENDENCIES ====================

class DependencyError(MarketError):
    """An external collaborator failed. Recovered inside the core."""
    status_code = 503


class QuoteUnavailable(DependencyError):
    pass


class GenerationFailed(DependencyError):
    pass


# ==================== CONCURRENCY ====================

class ConcurrencyConflict(MarketError):
    """Lost a race for a storage lock; the whole operation may be retried."""
    status_code = 409
