"""Route GHG intensity comparison against the year's baseline route.

percent_diff = ((comparison / baseline) - 1) × 100

A route is compliant when comparison <= baseline (percent_diff <= 0).
"""
from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Iterable, List

from .errors import ValidationError

__all__ = [
    "ComparisonInput",
    "ComparisonResult",
    "all_compliant",
    "compare",
    "compare_batch",
    "compliant_routes",
    "non_compliant_routes",
    "percent_diff",
]


@dataclass(frozen=True)
class ComparisonInput:
    route_id: str
    baseline_ghg: float
    comparison_ghg: float


@dataclass(frozen=True)
class ComparisonResult:
    route_id: str
    baseline_ghg: float
    comparison_ghg: float
    percent_diff: float
    absolute_diff: float
    compliant: bool


def _number(value: float, label: str) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{label} must be a number") from None


def _validate(baseline_ghg: float, comparison_ghg: float) -> None:
    if not math.isfinite(baseline_ghg) or baseline_ghg <= 0:
        raise ValidationError("Baseline GHG must be positive")
    if not math.isfinite(comparison_ghg) or comparison_ghg < 0:
        raise ValidationError("Comparison GHG cannot be negative")


def percent_diff(comparison_ghg: float, baseline_ghg: float) -> float:
    comparison = _number(comparison_ghg, "Comparison GHG")
    baseline = _number(baseline_ghg, "Baseline GHG")
    _validate(baseline, comparison)
    return ((comparison / baseline) - 1) * 100


def compare(route_id: str, baseline_ghg: float, comparison_ghg: float) -> ComparisonResult:
    if not route_id or not str(route_id).strip():
        raise ValidationError("Route ID is required")
    baseline = _number(baseline_ghg, "Baseline GHG")
    comparison = _number(comparison_ghg, "Comparison GHG")
    _validate(baseline, comparison)

    return ComparisonResult(
        route_id=route_id,
        baseline_ghg=baseline,
        comparison_ghg=comparison,
        percent_diff=((comparison / baseline) - 1) * 100,
        absolute_diff=comparison - baseline,
        compliant=comparison <= baseline,
    )


def compare_batch(inputs: Iterable[ComparisonInput]) -> List[ComparisonResult]:
    return [compare(i.route_id, i.baseline_ghg, i.comparison_ghg) for i in inputs]


def all_compliant(results: Iterable[ComparisonResult]) -> bool:
    return all(r.compliant for r in results)


def compliant_routes(results: Iterable[ComparisonResult]) -> List[ComparisonResult]:
    return [r for r in results if r.compliant]


def non_compliant_routes(results: Iterable[ComparisonResult]) -> List[ComparisonResult]:
    return [r for r in results if not r.compliant]
