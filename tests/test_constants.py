import json
import logging

import pytest

from fueleu_ledger.rules.constants import (
    GHG_TARGET_2025,
    GWP100_CH4,
    GWP100_N2O,
    MJ_PER_TONNE,
    MissingConstantField,
    default_table,
    load_regulatory_table,
)
from fueleu_ledger.rules.errors import ValidationError


def _registry(**overrides):
    registry = {
        "gwp100": {"CH4": 25, "N2O": 298},
        "mj_per_tonne": 41000,
        "default_fuel": "Other",
        "fallback_year": 2025,
        "targets": {"2025": 89.3368, "2026": 87.5},
        "fuels": {
            "HFO": {
                "lcv_mj_per_gram": 0.0405,
                "wtt_factor": 13.5,
                "co2_factor": 77.4,
                "ch4_factor": 0.003,
                "n2o_factor": 0.006,
                "default_methane_slip": 0.0,
            },
            "Other": {
                "lcv_mj_per_gram": 0.041,
                "wtt_factor": 15.0,
                "co2_factor": 75.0,
                "ch4_factor": 0.003,
                "n2o_factor": 0.006,
                "default_methane_slip": 0.0,
            },
        },
    }
    registry.update(overrides)
    return registry


def _write(tmp_path, registry, name="registry.json"):
    path = tmp_path / name
    path.write_text(json.dumps(registry))
    return path


def test_default_table_ships_published_constants():
    table = default_table()
    assert table.gwp_ch4 == GWP100_CH4 == 25
    assert table.gwp_n2o == GWP100_N2O == 298
    assert table.mj_per_tonne == MJ_PER_TONNE == 41000
    assert table.target_intensity(2025) == pytest.approx(GHG_TARGET_2025)
    assert {"HFO", "MDO", "MGO", "LNG", "Methanol", "Ammonia", "Hydrogen", "Other"} <= set(table.fuels)


@pytest.mark.parametrize(
    "year, expected",
    [(2025, 89.3368), (2026, 87.5), (2027, 85.0), (2028, 82.5), (2029, 80.0), (2030, 77.5)],
)
def test_default_targets_per_year(year, expected):
    assert default_table().target_intensity(year) == pytest.approx(expected)


def test_lookup_unknown_fuel_returns_other(tmp_path):
    table = load_regulatory_table(_write(tmp_path, _registry()))
    assert table.lookup("Kerosene").fuel_type == "Other"
    assert table.lookup(None).fuel_type == "Other"
    assert table.lookup("HFO").co2_factor == pytest.approx(77.4)


def test_unknown_year_falls_back_to_2025_and_warns(tmp_path, caplog):
    table = load_regulatory_table(_write(tmp_path, _registry()))
    with caplog.at_level(logging.WARNING, logger="fueleu_ledger.rules.constants"):
        assert table.target_intensity(2040) == pytest.approx(89.3368)
    assert "2040" in caplog.text


def test_strict_years_rejects_unknown_year(tmp_path):
    table = load_regulatory_table(_write(tmp_path, _registry()), strict_years=True)
    assert table.target_intensity(2026) == pytest.approx(87.5)
    with pytest.raises(ValidationError):
        table.target_intensity(2040)


def test_with_strict_years_keeps_the_data():
    strict = default_table().with_strict_years()
    assert strict.strict_years is True
    assert default_table().strict_years is False
    assert strict.target_intensity(2030) == pytest.approx(77.5)
    with pytest.raises(ValidationError):
        strict.target_intensity(2031)


def test_table_is_read_only():
    table = default_table()
    with pytest.raises(TypeError):
        table.fuels["HFO"] = table.fuels["Other"]  # type: ignore[index]
    with pytest.raises(TypeError):
        table.targets[2031] = 70.0  # type: ignore[index]


def test_missing_fuel_field_is_reported_with_path(tmp_path):
    registry = _registry()
    del registry["fuels"]["HFO"]["wtt_factor"]
    with pytest.raises(MissingConstantField) as excinfo:
        load_regulatory_table(_write(tmp_path, registry))
    assert excinfo.value.field_path == "fuels.HFO.wtt_factor"


def test_missing_targets_section(tmp_path):
    registry = _registry()
    del registry["targets"]
    with pytest.raises(MissingConstantField) as excinfo:
        load_regulatory_table(_write(tmp_path, registry))
    assert excinfo.value.field_path == "targets"


def test_fallback_year_must_have_a_target(tmp_path):
    with pytest.raises(MissingConstantField):
        load_regulatory_table(_write(tmp_path, _registry(fallback_year=2024)))


def test_registry_path_env_override(tmp_path, monkeypatch):
    registry = _registry(targets={"2025": 90.0})
    path = _write(tmp_path, registry, name="override.json")
    monkeypatch.setenv("FUELEU_REGISTRY_PATH", str(path))
    table = load_regulatory_table()
    assert table.target_intensity(2025) == pytest.approx(90.0)
