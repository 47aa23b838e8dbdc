"""Typed failures raised by the compliance rules and the ledger store."""
from __future__ import annotations

from typing import Iterable, List

__all__ = [
    "DomainError",
    "ValidationError",
    "BankingError",
    "PoolingError",
    "InsufficientFunds",
    "NotFound",
]


class DomainError(Exception):
    """Base class for every FuelEU ledger rule violation."""


class ValidationError(DomainError, ValueError):
    """Malformed or out-of-range input to a calculation."""


class BankingError(DomainError):
    """A banking rule was violated by otherwise well-formed input."""


class InsufficientFunds(BankingError):
    """The source ship's banked balance cannot cover the requested amount."""

    def __init__(self, available: float, requested: float):
        super().__init__(
            f"Insufficient banked CB. Available: {available}, Requested: {requested}"
        )
        self.available = available
        self.requested = requested


class PoolingError(DomainError):
    """Pool formation was refused; ``errors`` lists every reason."""

    def __init__(self, errors: Iterable[str]):
        self.errors: List[str] = list(errors)
        super().__init__(
            self.errors[0] if self.errors else "Pool cannot be formed"
        )


class NotFound(DomainError, LookupError):
    """A referenced compliance record (or route) does not exist."""
