import pytest

from fueleu_ledger.rules.comparison import (
    ComparisonInput,
    all_compliant,
    compare,
    compare_batch,
    compliant_routes,
    non_compliant_routes,
    percent_diff,
)
from fueleu_ledger.rules.errors import ValidationError


def test_compare_higher_intensity_is_non_compliant():
    result = compare("R002", 91.0, 93.5)
    assert result.percent_diff == pytest.approx((93.5 / 91.0 - 1) * 100)
    assert result.absolute_diff == pytest.approx(2.5)
    assert result.compliant is False


def test_compare_lower_intensity_is_compliant():
    result = compare("R003", 91.0, 88.0)
    assert result.percent_diff < 0
    assert result.compliant is True


def test_tie_counts_as_compliant():
    result = compare("R004", 89.2, 89.2)
    assert result.percent_diff == 0
    assert result.absolute_diff == 0
    assert result.compliant is True


@pytest.mark.parametrize(
    "route_id, baseline, comparison, message",
    [
        ("", 91.0, 90.0, "Route ID is required"),
        ("   ", 91.0, 90.0, "Route ID is required"),
        ("R1", 0.0, 90.0, "Baseline"),
        ("R1", -3.0, 90.0, "Baseline"),
        ("R1", 91.0, -0.5, "Comparison"),
    ],
)
def test_compare_rejects_invalid_input(route_id, baseline, comparison, message):
    with pytest.raises(ValidationError, match=message):
        compare(route_id, baseline, comparison)


def test_zero_comparison_is_allowed():
    result = compare("R9", 91.0, 0.0)
    assert result.percent_diff == pytest.approx(-100.0)
    assert result.compliant is True


def test_percent_diff_helper():
    assert percent_diff(110.0, 100.0) == pytest.approx(10.0)
    with pytest.raises(ValidationError):
        percent_diff(1.0, 0.0)


def test_batch_preserves_order_and_filters():
    inputs = [
        ComparisonInput("R1", 90.0, 91.0),
        ComparisonInput("R2", 90.0, 89.0),
        ComparisonInput("R3", 90.0, 90.0),
    ]
    results = compare_batch(inputs)
    assert [r.route_id for r in results] == ["R1", "R2", "R3"]
    assert [r.route_id for r in compliant_routes(results)] == ["R2", "R3"]
    assert [r.route_id for r in non_compliant_routes(results)] == ["R1"]
    assert all_compliant(results) is False
    assert all_compliant(results[1:]) is True


@pytest.mark.parametrize("comparison, baseline", [("abc", 91.0), (90.0, None), (object(), 91.0)])
def test_non_numeric_intensity_is_validation_error(comparison, baseline):
    with pytest.raises(ValidationError, match="must be a number"):
        percent_diff(comparison, baseline)
    with pytest.raises(ValidationError, match="must be a number"):
        compare("R1", baseline, comparison)


def test_numeric_strings_are_accepted():
    assert percent_diff("110", "100") == pytest.approx(10.0)
