"""Compliance balance (CB) calculations from fuel and energy data.

CB = (GHG_target - GHG_actual) × energy_in_scope, in gCO2e:
  - CB > 0: surplus (ship performed better than target)
  - CB < 0: deficit (ship performed worse than target)
  - CB = 0: exactly at target (compliant)
"""
from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Iterable, List, Optional, Sequence

from .constants import GRAMS_PER_TONNE, EmissionConstants, RegulatoryTable, default_table
from .errors import ValidationError

__all__ = [
    "ComplianceBalance",
    "ComplianceCalculator",
    "ComplianceInput",
    "ComplianceStatus",
    "EmissionBreakdown",
    "FuelRecord",
    "classify_status",
    "wind_reward_factor",
]


class ComplianceStatus(str, Enum):
    SURPLUS = "SURPLUS"
    DEFICIT = "DEFICIT"
    NEUTRAL = "NEUTRAL"


@dataclass(frozen=True)
class FuelRecord:
    """One fuel's consumption. When both quantities are given ``energy_mj`` wins."""
    fuel_type: str
    fuel_tons: Optional[float] = None
    energy_mj: Optional[float] = None
    methane_slip_fraction: Optional[float] = None


@dataclass(frozen=True)
class EmissionBreakdown:
    intensity_g_per_mj: float
    total_g: float
    energy_mj: float


@dataclass(frozen=True)
class ComplianceInput:
    ghg_target: float
    ghg_actual: float
    energy_in_scope_mj: float


@dataclass
class ComplianceBalance:
    """CB record for one (ship, year); ready for the store to persist."""
    ship_id: Optional[str]
    year: int
    ghg_target: float
    ghg_actual: float
    energy_in_scope_mj: float
    compliance_balance: float
    status: ComplianceStatus
    computed_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def is_compliant(self) -> bool:
        return self.status is not ComplianceStatus.DEFICIT


def classify_status(cb: float) -> ComplianceStatus:
    if cb > 0:
        return ComplianceStatus.SURPLUS
    if cb < 0:
        return ComplianceStatus.DEFICIT
    return ComplianceStatus.NEUTRAL


def wind_reward_factor(pwind_over_pprop: float) -> float:
    """
    Annex I wind-assisted propulsion reward factor by PWind/PProp band:
    - >= 0.05 -> 0.99
    - >= 0.10 -> 0.97
    - >= 0.15 -> 0.95
    Otherwise 1.00
    """
    r = max(0.0, float(pwind_over_pprop))
    if r >= 0.15:
        return 0.95
    if r >= 0.10:
        return 0.97
    if r >= 0.05:
        return 0.99
    return 1.00


def _finite(value: float, label: str) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{label} must be a number") from None
    if not math.isfinite(number):
        raise ValidationError(f"{label} must be a finite number")
    return number


def _positive(value: float, label: str) -> float:
    number = _finite(value, label)
    if number <= 0:
        raise ValidationError(f"{label} must be a positive number")
    return number


def _non_negative(value: float, label: str) -> float:
    number = _finite(value, label)
    if number < 0:
        raise ValidationError(f"{label} must be a non-negative number")
    return number


@dataclass(frozen=True)
class _ResolvedRecord:
    constants: EmissionConstants
    energy_mj: float
    methane_slip_fraction: float


class ComplianceCalculator:
    """
    Pure FuelEU calculations over fuel records and a :class:`RegulatoryTable`.

    - tank_to_wake / well_to_tank: per-record emission intensity and totals
    - aggregate_intensity: energy-weighted well-to-wake intensity of a fuel mix
    - compliance_balance / compute_for_year: CB and the record built from it
    """

    def __init__(self, table: Optional[RegulatoryTable] = None):
        self.table = table or default_table()

    # ------------- Energy -------------

    def energy_from_fuel_mass(self, tons: float) -> float:
        """Linear tonnes -> MJ conversion using the fixed MJ-per-tonne constant."""
        return _non_negative(tons, "fuel_tons") * self.table.mj_per_tonne

    def resolve_energy(self, record: FuelRecord) -> float:
        return self._resolve(record).energy_mj

    def _resolve(self, record: FuelRecord) -> _ResolvedRecord:
        if record.fuel_tons is None and record.energy_mj is None:
            raise ValidationError("fuel_tons or energy_mj is required")

        constants = self.table.lookup(record.fuel_type)

        if record.energy_mj is not None:
            energy = _non_negative(record.energy_mj, "energy_mj")
        else:
            tons = _non_negative(record.fuel_tons, "fuel_tons")  # type: ignore[arg-type]
            energy = tons * GRAMS_PER_TONNE * constants.lcv_mj_per_gram

        if energy <= 0:
            raise ValidationError("Calculated energy must be greater than zero")

        if record.methane_slip_fraction is None:
            slip = constants.default_methane_slip
        else:
            slip = _finite(record.methane_slip_fraction, "methane_slip_fraction")
            if not 0.0 <= slip <= 1.0:
                raise ValidationError("methane_slip_fraction must be between 0 and 1")

        return _ResolvedRecord(constants=constants, energy_mj=energy, methane_slip_fraction=slip)

    # ------------- Emissions -------------

    def tank_to_wake(self, record: FuelRecord) -> EmissionBreakdown:
        resolved = self._resolve(record)
        c = resolved.constants
        ch4 = c.ch4_factor * resolved.methane_slip_fraction * self.table.gwp_ch4
        n2o = c.n2o_factor * self.table.gwp_n2o
        intensity = c.co2_factor + ch4 + n2o
        return EmissionBreakdown(
            intensity_g_per_mj=intensity,
            total_g=intensity * resolved.energy_mj,
            energy_mj=resolved.energy_mj,
        )

    def well_to_tank(self, record: FuelRecord) -> EmissionBreakdown:
        resolved = self._resolve(record)
        intensity = resolved.constants.wtt_factor
        return EmissionBreakdown(
            intensity_g_per_mj=intensity,
            total_g=intensity * resolved.energy_mj,
            energy_mj=resolved.energy_mj,
        )

    def aggregate_intensity(self, records: Sequence[FuelRecord], wind_factor: float = 1.0) -> float:
        """Well-to-wake GHG intensity (gCO2e/MJ) of a fuel mix, scaled by ``wind_factor``."""
        if not records:
            raise ValidationError("records must be a non-empty sequence")
        wind = _finite(wind_factor, "wind_factor")
        if wind <= 0:
            raise ValidationError("wind_factor must be a positive number")

        total_energy = 0.0
        total_wtt = 0.0
        total_ttw = 0.0
        for record in records:
            wtt = self.well_to_tank(record)
            ttw = self.tank_to_wake(record)
            total_energy += wtt.energy_mj
            total_wtt += wtt.total_g
            total_ttw += ttw.total_g

        if total_energy == 0:
            raise ValidationError("Total energy must be greater than zero")

        return wind * (total_wtt + total_ttw) / total_energy

    # ------------- Compliance balance -------------

    def compliance_balance(self, target_intensity: float, actual_intensity: float, energy_mj: float) -> float:
        target = _positive(target_intensity, "target_intensity")
        actual = _non_negative(actual_intensity, "actual_intensity")
        energy = _positive(energy_mj, "energy_mj")
        return (target - actual) * energy

    def compute_for_year(
        self,
        year: int,
        actual_intensity: float,
        energy_mj: float,
        *,
        ship_id: Optional[str] = None,
    ) -> ComplianceBalance:
        target = self.table.target_intensity(year)
        cb = self.compliance_balance(target, actual_intensity, energy_mj)
        return ComplianceBalance(
            ship_id=ship_id,
            year=int(year),
            ghg_target=target,
            ghg_actual=float(actual_intensity),
            energy_in_scope_mj=float(energy_mj),
            compliance_balance=cb,
            status=classify_status(cb),
        )

    def compute_batch(self, inputs: Iterable[ComplianceInput]) -> List[float]:
        return [
            self.compliance_balance(i.ghg_target, i.ghg_actual, i.energy_in_scope_mj)
            for i in inputs
        ]
