"""FuelEU regulatory constants: per-fuel emission factors and yearly targets.

The values ship as ``regulatory_registry.json`` next to this module and are
loaded once into an immutable :class:`RegulatoryTable`. Callers that need a
different rule set (tests, what-if runs) build their own table or point
``FUELEU_REGISTRY_PATH`` at another registry file.

Units:
  - lcv_mj_per_gram: MJ of energy per gram of fuel
  - wtt_factor: gCO2e per MJ (upstream Well-to-Tank)
  - co2_factor / ch4_factor / n2o_factor: g per MJ (Tank-to-Wake, before GWP)
  - default_methane_slip: fraction (0..1) applied to the CH4 factor
"""
from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from types import MappingProxyType
from typing import Any, Dict, Mapping

from .errors import ValidationError

__all__ = [
    "DEFAULT_FUEL_TYPE",
    "GHG_TARGET_2025",
    "GWP100_CH4",
    "GWP100_N2O",
    "MJ_PER_TONNE",
    "EmissionConstants",
    "MissingConstantField",
    "RegulatoryTable",
    "default_table",
    "load_regulatory_table",
]

logger = logging.getLogger(__name__)

# 100-year global warming potentials
GWP100_CH4: float = 25.0
GWP100_N2O: float = 298.0

# Fixed fuel-mass to energy conversion (MJ per tonne)
MJ_PER_TONNE: float = 41_000.0

GRAMS_PER_TONNE: float = 1_000_000.0

GHG_TARGET_2025: float = 89.3368  # gCO2e/MJ

DEFAULT_FUEL_TYPE = "Other"

_DEFAULT_REGISTRY_PATH = Path(__file__).with_name("regulatory_registry.json")

_REQUIRED_TOP_KEYS = {"fuels", "targets"}
_REQUIRED_FUEL_KEYS = {
    "lcv_mj_per_gram",
    "wtt_factor",
    "co2_factor",
    "ch4_factor",
    "n2o_factor",
    "default_methane_slip",
}


class MissingConstantField(KeyError):
    """Raised when an expected field is missing from the regulatory registry."""

    def __init__(self, field_path: str):
        super().__init__(field_path)
        self.field_path = field_path

    def __str__(self) -> str:
        return f"missing required registry field: {self.field_path}"


@dataclass(frozen=True)
class EmissionConstants:
    fuel_type: str
    lcv_mj_per_gram: float
    wtt_factor: float
    co2_factor: float
    ch4_factor: float
    n2o_factor: float
    default_methane_slip: float = 0.0


class RegulatoryTable:
    """
    Read-only registry of fuel factors and per-year GHG intensity targets.

    ``lookup`` never fails: unknown fuel types resolve to the default fuel
    ("Other"). ``target_intensity`` falls back to the ``fallback_year`` target
    for years without an entry unless the table was built with
    ``strict_years=True``, in which case unknown years are rejected.
    """

    def __init__(
        self,
        fuels: Mapping[str, EmissionConstants],
        targets: Mapping[int, float],
        *,
        default_fuel: str = DEFAULT_FUEL_TYPE,
        fallback_year: int = 2025,
        gwp_ch4: float = GWP100_CH4,
        gwp_n2o: float = GWP100_N2O,
        mj_per_tonne: float = MJ_PER_TONNE,
        strict_years: bool = False,
    ):
        if default_fuel not in fuels:
            raise MissingConstantField(f"fuels.{default_fuel}")
        if fallback_year not in targets:
            raise MissingConstantField(f"targets.{fallback_year}")
        self._fuels = MappingProxyType(dict(fuels))
        self._targets = MappingProxyType({int(y): float(v) for y, v in targets.items()})
        self._default_fuel = default_fuel
        self._fallback_year = fallback_year
        self._gwp_ch4 = float(gwp_ch4)
        self._gwp_n2o = float(gwp_n2o)
        self._mj_per_tonne = float(mj_per_tonne)
        self._strict_years = strict_years

    @property
    def fuels(self) -> Mapping[str, EmissionConstants]:
        return self._fuels

    @property
    def targets(self) -> Mapping[int, float]:
        return self._targets

    @property
    def gwp_ch4(self) -> float:
        return self._gwp_ch4

    @property
    def gwp_n2o(self) -> float:
        return self._gwp_n2o

    @property
    def mj_per_tonne(self) -> float:
        return self._mj_per_tonne

    @property
    def strict_years(self) -> bool:
        return self._strict_years

    def lookup(self, fuel_type: Any) -> EmissionConstants:
        key = getattr(fuel_type, "value", fuel_type)
        found = self._fuels.get(str(key)) if key is not None else None
        if found is None:
            return self._fuels[self._default_fuel]
        return found

    def target_intensity(self, year: int) -> float:
        target = self._targets.get(int(year))
        if target is not None:
            return target
        if self._strict_years:
            raise ValidationError(f"No GHG target defined for year {year}")
        logger.warning(
            "No GHG target defined for %s; using %s target %.4f",
            year,
            self._fallback_year,
            self._targets[self._fallback_year],
        )
        return self._targets[self._fallback_year]

    def with_strict_years(self, strict: bool = True) -> "RegulatoryTable":
        return RegulatoryTable(
            self._fuels,
            self._targets,
            default_fuel=self._default_fuel,
            fallback_year=self._fallback_year,
            gwp_ch4=self._gwp_ch4,
            gwp_n2o=self._gwp_n2o,
            mj_per_tonne=self._mj_per_tonne,
            strict_years=strict,
        )


def _resolve_registry_path(path: str | os.PathLike[str] | None) -> Path:
    if path is not None:
        return Path(path)
    override = os.getenv("FUELEU_REGISTRY_PATH")
    if override:
        return Path(override)
    return _DEFAULT_REGISTRY_PATH


@lru_cache(maxsize=None)
def _load_registry(path_str: str) -> Dict[str, Any]:
    path = Path(path_str)
    with path.open("r", encoding="utf-8") as handle:
        data = json.load(handle)
    if not isinstance(data, Mapping):
        raise ValueError("regulatory registry must be a mapping")
    return dict(data)


def _ensure_keys(registry: Mapping[str, Any]) -> None:
    for key in _REQUIRED_TOP_KEYS:
        if key not in registry:
            raise MissingConstantField(key)

    if not isinstance(registry["fuels"], Mapping):
        raise MissingConstantField("fuels")
    for fuel, record in registry["fuels"].items():
        for key in _REQUIRED_FUEL_KEYS:
            if key not in record:
                raise MissingConstantField(f"fuels.{fuel}.{key}")

    if not isinstance(registry["targets"], Mapping):
        raise MissingConstantField("targets")


def load_regulatory_table(
    registry_path: str | os.PathLike[str] | None = None,
    *,
    strict_years: bool = False,
) -> RegulatoryTable:
    """Build a :class:`RegulatoryTable` from a JSON registry file."""

    path = _resolve_registry_path(registry_path)
    registry = _load_registry(str(path))
    _ensure_keys(registry)

    fuels = {
        str(name): EmissionConstants(
            fuel_type=str(name),
            **{k: float(record[k]) for k in _REQUIRED_FUEL_KEYS},
        )
        for name, record in registry["fuels"].items()
    }
    targets = {int(year): float(value) for year, value in registry["targets"].items()}
    gwp = registry.get("gwp100", {})

    return RegulatoryTable(
        fuels,
        targets,
        default_fuel=str(registry.get("default_fuel", DEFAULT_FUEL_TYPE)),
        fallback_year=int(registry.get("fallback_year", 2025)),
        gwp_ch4=float(gwp.get("CH4", GWP100_CH4)),
        gwp_n2o=float(gwp.get("N2O", GWP100_N2O)),
        mj_per_tonne=float(registry.get("mj_per_tonne", MJ_PER_TONNE)),
        strict_years=strict_years,
    )


@lru_cache(maxsize=1)
def default_table() -> RegulatoryTable:
    """The process-wide table, loaded once from the default (or overridden) registry."""
    return load_regulatory_table()
