"""Compliance balance banking.

Banking rules:
  - Only positive CB can be banked; deficits and neutral balances are refused.
  - A banked balance is the sum of a ship's append-only bank entries.
  - Banked CB can be applied to a (possibly different) ship's record to
    offset a deficit.

The pure functions below work on explicit balances. ``bank_surplus`` and
``apply_banked_transfer`` run the read-check-write protocol against a
:class:`~fueleu_ledger.store.LedgerStore` inside one atomic unit.
"""
from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import TYPE_CHECKING, Optional

from .errors import BankingError, InsufficientFunds, ValidationError

if TYPE_CHECKING:  # pragma: no cover
    from ..store import LedgerStore

__all__ = [
    "ApplyResult",
    "BankDeposit",
    "BankResult",
    "BankTransferOutcome",
    "BankingValidation",
    "TransferResult",
    "apply_banked_to_deficit",
    "apply_banked_transfer",
    "bank",
    "bank_surplus",
    "calculate_required_transfer",
    "can_bank",
    "can_provide_support",
    "needs_support",
    "transfer",
]

logger = logging.getLogger(__name__)

CANNOT_BANK_REASON = "only positive compliance balance can be banked"


@dataclass(frozen=True)
class BankingValidation:
    allowed: bool
    reason: Optional[str] = None
    bankable_amount: float = 0.0


@dataclass(frozen=True)
class BankResult:
    updated_source_cb: float
    transferred_amount: float


@dataclass(frozen=True)
class ApplyResult:
    updated_target_cb: float
    transferred_amount: float


@dataclass(frozen=True)
class TransferResult:
    updated_source_cb: float
    updated_target_cb: float
    transferred_amount: float


@dataclass(frozen=True)
class BankDeposit:
    ship_id: str
    year: int
    banked_amount: float
    remaining_cb: float


@dataclass(frozen=True)
class BankTransferOutcome:
    source_ship_id: str
    target_ship_id: str
    year: int
    applied_amount: float
    target_new_cb: float
    source_remaining_balance: float


def _positive_amount(amount: float, label: str = "Transfer amount") -> float:
    try:
        value = float(amount)
    except (TypeError, ValueError):
        raise ValidationError(f"{label} must be a number") from None
    if not math.isfinite(value) or value <= 0:
        raise ValidationError(f"{label} must be positive")
    return value


# ------------- Pure balance arithmetic -------------

def can_bank(cb: float) -> BankingValidation:
    if not cb > 0:
        return BankingValidation(allowed=False, reason=CANNOT_BANK_REASON, bankable_amount=0.0)
    return BankingValidation(allowed=True, bankable_amount=cb)


def bank(source_cb: float, amount: float) -> BankResult:
    """Move ``amount`` out of a surplus CB into the bank."""
    validation = can_bank(source_cb)
    if not validation.allowed:
        raise BankingError(validation.reason or CANNOT_BANK_REASON)

    value = _positive_amount(amount)
    if value > source_cb:
        raise BankingError(f"Transfer amount ({value}) exceeds available CB ({source_cb})")

    return BankResult(updated_source_cb=source_cb - value, transferred_amount=value)


def apply_banked_to_deficit(target_cb: float, banked_amount: float) -> ApplyResult:
    """
    Add banked CB to a target balance. No upper bound is enforced here: the
    caller checks the banked balance first, and the result may turn a
    deficit into a surplus.
    """
    value = _positive_amount(banked_amount, "Banked amount")
    return ApplyResult(updated_target_cb=target_cb + value, transferred_amount=value)


def transfer(source_cb: float, target_cb: float, amount: float) -> TransferResult:
    """Direct surplus-to-target transfer without going through the bank."""
    if not source_cb > 0:
        raise BankingError("Source CB must be positive to transfer")

    value = _positive_amount(amount)
    if value > source_cb:
        raise BankingError(f"Transfer amount ({value}) exceeds available CB ({source_cb})")

    return TransferResult(
        updated_source_cb=source_cb - value,
        updated_target_cb=target_cb + value,
        transferred_amount=value,
    )


def calculate_required_transfer(target_cb: float) -> float:
    """Amount needed to bring a deficit to exactly zero (0 when already compliant)."""
    return max(0.0, -target_cb)


def needs_support(cb: float) -> bool:
    return cb < 0


def can_provide_support(cb: float) -> bool:
    return cb > 0


# ------------- Store-backed protocols -------------

def bank_surplus(store: "LedgerStore", ship_id: str, year: int, amount: float) -> BankDeposit:
    """Bank part of a ship's surplus: +amount bank entry and reduced CB, atomically."""
    value = _positive_amount(amount)

    with store.atomic():
        record = store.get_compliance_record(ship_id, year, for_update=True)
        result = bank(record.compliance_balance, value)
        store.append_bank_entry(ship_id, year, result.transferred_amount)
        store.update_compliance_balance(ship_id, year, result.updated_source_cb)

    logger.info(
        "Banked %.2f gCO2e for %s/%s; remaining CB %.2f",
        result.transferred_amount, ship_id, year, result.updated_source_cb,
    )
    return BankDeposit(
        ship_id=ship_id,
        year=int(year),
        banked_amount=result.transferred_amount,
        remaining_cb=result.updated_source_cb,
    )


def apply_banked_transfer(
    store: "LedgerStore",
    source_ship_id: str,
    target_ship_id: str,
    year: int,
    amount: float,
) -> BankTransferOutcome:
    """
    Spend ``amount`` of the source ship's banked CB on the target's record.

    Within one atomic unit:
      1. source banked balance = sum of its entries; InsufficientFunds if short
      2. target compliance record for ``year``; NotFound if absent
      3. apply_banked_to_deficit on the target CB
      4. -amount entry for the source, +amount entry for the target, and the
         target's new CB
    """
    value = _positive_amount(amount)
    if not source_ship_id or not target_ship_id:
        raise ValidationError("source and target ship ids are required")
    if source_ship_id == target_ship_id:
        raise BankingError("Source ship is not eligible to provide support to itself")

    with store.atomic():
        balance = store.sum_bank_entries(source_ship_id)
        if balance < value:
            raise InsufficientFunds(available=balance, requested=value)

        target = store.get_compliance_record(target_ship_id, year, for_update=True)
        applied = apply_banked_to_deficit(target.compliance_balance, value)

        store.append_bank_entry(source_ship_id, year, -applied.transferred_amount)
        store.append_bank_entry(target_ship_id, year, applied.transferred_amount)
        store.update_compliance_balance(target_ship_id, year, applied.updated_target_cb)

    logger.info(
        "Applied %.2f banked gCO2e from %s to %s/%s; target CB now %.2f",
        applied.transferred_amount, source_ship_id, target_ship_id, year, applied.updated_target_cb,
    )
    return BankTransferOutcome(
        source_ship_id=source_ship_id,
        target_ship_id=target_ship_id,
        year=int(year),
        applied_amount=applied.transferred_amount,
        target_new_cb=applied.updated_target_cb,
        source_remaining_balance=balance - applied.transferred_amount,
    )
