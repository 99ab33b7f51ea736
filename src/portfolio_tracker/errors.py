"""Exception hierarchy for the portfolio tracker.

Every error raised by the engine derives from :class:`PortfolioError` so the
web and CLI layers can catch library failures in one place while still telling
validation problems apart from missing records.
"""
from __future__ import annotations


class PortfolioError(Exception):
    """Base class for all portfolio tracker errors."""


class ValidationError(PortfolioError, ValueError):
    """Raised when input is rejected before any state is mutated."""


class NotFoundError(PortfolioError, KeyError):
    """Raised when a record id does not exist."""

    def __str__(self) -> str:
        # KeyError quotes its argument; keep plain messages.
        return str(self.args[0]) if self.args else ""


class HoldingNotFoundError(NotFoundError):
    """Raised for an unknown holding id."""


class TransactionNotFoundError(NotFoundError):
    """Raised for an unknown transaction id."""


class GoalNotFoundError(NotFoundError):
    """Raised for an unknown goal id."""


class InvariantViolationError(PortfolioError):
    """Raised when a change would leave a holding with quantity <= 0."""


class QuoteLookupError(PortfolioError):
    """Raised when a quote is required but no source could provide one."""


class ConfigurationError(PortfolioError, RuntimeError):
    """Raised for invalid or incomplete settings."""


__all__ = [
    "PortfolioError",
    "ValidationError",
    "NotFoundError",
    "HoldingNotFoundError",
    "TransactionNotFoundError",
    "GoalNotFoundError",
    "InvariantViolationError",
    "QuoteLookupError",
    "ConfigurationError",
]
