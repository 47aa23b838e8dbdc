"""Compliance pooling via greedy surplus-to-deficit allocation.

Pooling rules:
  - At least two members, unique non-empty ship ids.
  - The pool is refused when the members' total CB is negative.
  - Total CB is conserved (within ``CONSERVATION_TOLERANCE``).
  - A ship entering with a deficit never exits worse off.
  - A ship entering with a surplus never exits negative.

Allocation order is part of the contract: members are sorted by CB
descending with a stable sort (equal balances keep their input order), and
each deficit, in that order, draws from the surpluses in that same order.
"""
from __future__ import annotations

import logging
import math
from dataclasses import dataclass, replace
from typing import TYPE_CHECKING, Iterable, List, Optional, Sequence, Tuple

from .errors import PoolingError, ValidationError

if TYPE_CHECKING:  # pragma: no cover
    from ..store import LedgerStore

__all__ = [
    "CONSERVATION_TOLERANCE",
    "PoolCreation",
    "PoolMemberInput",
    "PoolMemberResult",
    "PoolStats",
    "PoolingResult",
    "allocate_pool",
    "can_form_pool",
    "create_pool",
    "pool_stats",
]

logger = logging.getLogger(__name__)

CONSERVATION_TOLERANCE = 0.001

NEGATIVE_TOTAL_ERROR = "Pool cannot be formed: total CB is negative"


@dataclass(frozen=True)
class PoolMemberInput:
    ship_id: str
    cb_before: float
    ship_name: Optional[str] = None


@dataclass
class PoolMemberResult:
    ship_id: str
    ship_name: Optional[str]
    cb_before: float
    cb_after: float
    contribution: float = 0.0  # positive = gave, negative = received


@dataclass
class PoolingResult:
    members: List[PoolMemberResult]
    total_initial_cb: float
    total_adjusted_cb: float
    is_valid: bool
    validation_errors: List[str]


@dataclass(frozen=True)
class PoolStats:
    total_cb: float
    surplus_count: int
    deficit_count: int
    neutral_count: int
    total_surplus: float
    total_deficit: float


@dataclass(frozen=True)
class PoolCreation:
    pool_id: int
    year: int
    members: List[PoolMemberResult]


def _validate_members(members: Sequence[PoolMemberInput]) -> List[PoolMemberInput]:
    """Check the members and return them with every CB as a float."""
    if not members:
        raise ValidationError("Pool must have at least one member")
    if len(members) < 2:
        raise ValidationError("Pool must have at least two members")

    seen = set()
    checked: List[PoolMemberInput] = []
    for idx, m in enumerate(members):
        if not m.ship_id or not str(m.ship_id).strip():
            raise ValidationError(f"Member {idx} missing shipId")
        try:
            cb = float(m.cb_before)
        except (TypeError, ValueError):
            raise ValidationError(f"Member {m.ship_id} CB must be a number") from None
        if not math.isfinite(cb):
            raise ValidationError(f"Member {m.ship_id} has a non-finite CB")
        if m.ship_id in seen:
            raise ValidationError("Duplicate ship IDs in pool")
        seen.add(m.ship_id)
        checked.append(replace(m, cb_before=cb))
    return checked


def _greedy_allocation(members: Sequence[PoolMemberInput]) -> List[PoolMemberResult]:
    # sorted(reverse=True) is stable: ties keep input order
    ordered = sorted(members, key=lambda m: m.cb_before, reverse=True)
    results = [
        PoolMemberResult(ship_id=m.ship_id, ship_name=m.ship_name, cb_before=m.cb_before, cb_after=m.cb_before)
        for m in ordered
    ]

    surplus_idx = [i for i, r in enumerate(results) if r.cb_before > 0]
    deficit_idx = [i for i, r in enumerate(results) if r.cb_before < 0]

    for d in deficit_idx:
        deficit = results[d]
        remaining = abs(deficit.cb_before)
        for s in surplus_idx:
            if remaining <= 0:
                break
            surplus = results[s]
            if surplus.cb_after <= 0:
                continue
            amount = min(surplus.cb_after, remaining)
            surplus.cb_after -= amount
            deficit.cb_after += amount
            remaining -= amount

    for r in results:
        r.contribution = r.cb_before - r.cb_after
    return results


def _postcondition_errors(results: Sequence[PoolMemberResult]) -> List[str]:
    errors: List[str] = []

    total_before = sum(r.cb_before for r in results)
    total_after = sum(r.cb_after for r in results)
    if total_after < 0:
        errors.append("Total adjusted CB is negative")

    for r in results:
        if r.cb_before < 0 and r.cb_after < r.cb_before:
            errors.append(f"Ship {r.ship_id} exits worse than initial ({r.cb_after} < {r.cb_before})")

    for r in results:
        if r.cb_before > 0 and r.cb_after < 0:
            errors.append(f"Surplus ship {r.ship_id} exits with negative CB")

    if abs(total_before - total_after) > CONSERVATION_TOLERANCE:
        errors.append(f"CB not conserved: initial={total_before}, final={total_after}")

    return errors


def allocate_pool(members: Sequence[PoolMemberInput]) -> PoolingResult:
    """
    Redistribute CB across ``members``. Raises ValidationError for malformed
    input; a negative total or a failed post-condition is reported through
    ``is_valid=False`` and ``validation_errors`` instead of raising.
    """
    members = _validate_members(members)

    total_initial = sum(m.cb_before for m in members)
    if total_initial < 0:
        return PoolingResult(
            members=[],
            total_initial_cb=total_initial,
            total_adjusted_cb=total_initial,
            is_valid=False,
            validation_errors=[NEGATIVE_TOTAL_ERROR],
        )

    results = _greedy_allocation(members)
    errors = _postcondition_errors(results)
    if errors:
        logger.error("Pool allocation failed post-conditions: %s", "; ".join(errors))

    return PoolingResult(
        members=results,
        total_initial_cb=total_initial,
        total_adjusted_cb=sum(r.cb_after for r in results),
        is_valid=not errors,
        validation_errors=errors,
    )


def can_form_pool(members: Iterable[PoolMemberInput]) -> bool:
    return sum(m.cb_before for m in members) >= 0


def pool_stats(members: Iterable[PoolMemberInput]) -> PoolStats:
    total = surplus_total = deficit_total = 0.0
    surplus = deficit = neutral = 0
    for m in members:
        total += m.cb_before
        if m.cb_before > 0:
            surplus += 1
            surplus_total += m.cb_before
        elif m.cb_before < 0:
            deficit += 1
            deficit_total += abs(m.cb_before)
        else:
            neutral += 1
    return PoolStats(
        total_cb=total,
        surplus_count=surplus,
        deficit_count=deficit,
        neutral_count=neutral,
        total_surplus=surplus_total,
        total_deficit=deficit_total,
    )


def create_pool(
    store: "LedgerStore",
    year: int,
    ships: Sequence[Tuple[str, Optional[str]]],
) -> PoolCreation:
    """
    Form a pool from each ship's current CB for ``year`` and persist it.

    ``ships`` is a sequence of ``(ship_id, ship_name)``. Reading the balances,
    writing the pool with its members and updating every member's compliance
    record happen in one atomic unit; an invalid pool raises PoolingError
    before anything is written.
    """
    ids = [ship_id for ship_id, _ in ships]
    if len(ids) < 2:
        raise ValidationError("Pool must have at least two members")
    for idx, ship_id in enumerate(ids):
        if not ship_id or not str(ship_id).strip():
            raise ValidationError(f"Member {idx} missing shipId")
    if len(set(ids)) != len(ids):
        raise ValidationError("Duplicate ship IDs in pool")

    with store.atomic():
        members = [
            PoolMemberInput(
                ship_id=ship_id,
                ship_name=ship_name,
                cb_before=store.get_compliance_record(ship_id, year, for_update=True).compliance_balance,
            )
            for ship_id, ship_name in ships
        ]
        result = allocate_pool(members)
        if not result.is_valid:
            raise PoolingError(result.validation_errors)
        pool_id = store.create_pool_atomically(year, result.members)

    logger.info(
        "Created pool %s for %s with %d members (total CB %.2f)",
        pool_id, year, len(result.members), result.total_adjusted_cb,
    )
    return PoolCreation(pool_id=pool_id, year=int(year), members=result.members)
