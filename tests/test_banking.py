import pytest

from fueleu_ledger.db import SessionLocal
from fueleu_ledger.rules.banking import (
    CANNOT_BANK_REASON,
    apply_banked_to_deficit,
    apply_banked_transfer,
    bank,
    bank_surplus,
    calculate_required_transfer,
    can_bank,
    can_provide_support,
    needs_support,
    transfer,
)
from fueleu_ledger.rules.compliance import ComplianceStatus
from fueleu_ledger.rules.errors import BankingError, InsufficientFunds, NotFound, ValidationError
from fueleu_ledger.store import SqlLedgerStore


# ------------- Pure rules -------------

@pytest.mark.parametrize("cb", [0.0, -1.0, -250000.0])
def test_can_bank_refuses_non_positive(cb):
    result = can_bank(cb)
    assert result.allowed is False
    assert result.reason == CANNOT_BANK_REASON


def test_can_bank_allows_surplus():
    result = can_bank(1500.0)
    assert result.allowed is True
    assert result.bankable_amount == 1500.0


def test_bank_reduces_source():
    result = bank(100000, 40000)
    assert result.updated_source_cb == 60000
    assert result.transferred_amount == 40000


def test_bank_exceeding_available_fails():
    with pytest.raises(BankingError, match="exceeds available"):
        bank(100000, 150000)


def test_bank_from_deficit_fails():
    with pytest.raises(BankingError):
        bank(-5, 1)
    with pytest.raises(BankingError):
        bank(0, 1)


@pytest.mark.parametrize("amount", [0, -10, float("nan")])
def test_bank_non_positive_amount_is_validation_error(amount):
    with pytest.raises(ValidationError):
        bank(100, amount)


def test_apply_banked_has_no_upper_bound():
    assert apply_banked_to_deficit(-1000, 5000).updated_target_cb == 4000
    with pytest.raises(ValidationError):
        apply_banked_to_deficit(-1000, 0)


def test_direct_transfer():
    result = transfer(5000, -2000, 2000)
    assert (result.updated_source_cb, result.updated_target_cb) == (3000, 0)
    with pytest.raises(BankingError):
        transfer(0, -2000, 10)
    with pytest.raises(BankingError):
        transfer(100, -2000, 101)


def test_support_helpers():
    assert calculate_required_transfer(-2500) == 2500
    assert calculate_required_transfer(10) == 0
    assert needs_support(-1) and not needs_support(0)
    assert can_provide_support(1) and not can_provide_support(0)


# ------------- Store-backed protocols -------------

def test_bank_surplus_appends_entry_and_reduces_cb(store, add_record):
    add_record("SHIP-A", 100000)

    deposit = bank_surplus(store, "SHIP-A", 2025, 40000)

    assert deposit.banked_amount == 40000
    assert deposit.remaining_cb == 60000
    assert store.sum_bank_entries("SHIP-A") == pytest.approx(40000)
    assert store.get_compliance_record("SHIP-A", 2025).compliance_balance == pytest.approx(60000)


def test_bank_surplus_refuses_deficit_and_writes_nothing(store, add_record):
    add_record("SHIP-B", -5000)

    with pytest.raises(BankingError):
        bank_surplus(store, "SHIP-B", 2025, 100)

    assert store.sum_bank_entries("SHIP-B") == 0
    assert store.get_compliance_record("SHIP-B", 2025).compliance_balance == -5000


def test_bank_surplus_missing_record(store):
    with pytest.raises(NotFound):
        bank_surplus(store, "GHOST", 2025, 100)


def test_apply_banked_transfer_moves_balance(store, add_record):
    add_record("SRC", 90000)
    add_record("DST", -50000)
    store.append_bank_entry("SRC", 2025, 80000)

    outcome = apply_banked_transfer(store, "SRC", "DST", 2025, 50000)

    assert outcome.target_new_cb == pytest.approx(0)
    assert outcome.source_remaining_balance == pytest.approx(30000)
    assert store.sum_bank_entries("SRC") == pytest.approx(30000)
    assert store.sum_bank_entries("DST") == pytest.approx(50000)
    target = store.get_compliance_record("DST", 2025)
    assert target.compliance_balance == pytest.approx(0)
    assert target.status is ComplianceStatus.NEUTRAL


def test_apply_banked_transfer_can_push_into_surplus(store, add_record):
    add_record("DST", -1000)
    store.append_bank_entry("SRC", 2025, 5000)

    outcome = apply_banked_transfer(store, "SRC", "DST", 2025, 5000)

    assert outcome.target_new_cb == pytest.approx(4000)
    assert store.get_compliance_record("DST", 2025).status is ComplianceStatus.SURPLUS


def test_insufficient_funds_leaves_ledger_untouched(store, add_record):
    add_record("DST", -120000)
    store.append_bank_entry("SRC", 2025, 80000)

    with pytest.raises(InsufficientFunds) as excinfo:
        apply_banked_transfer(store, "SRC", "DST", 2025, 100000)

    assert excinfo.value.available == pytest.approx(80000)
    assert excinfo.value.requested == pytest.approx(100000)
    assert "Available: 80000" in str(excinfo.value)
    assert store.sum_bank_entries("SRC") == pytest.approx(80000)
    assert store.sum_bank_entries("DST") == 0
    assert store.get_compliance_record("DST", 2025).compliance_balance == pytest.approx(-120000)


def test_missing_target_record_is_not_found(store):
    store.append_bank_entry("SRC", 2025, 80000)

    with pytest.raises(NotFound):
        apply_banked_transfer(store, "SRC", "NOBODY", 2025, 1000)

    assert store.sum_bank_entries("SRC") == pytest.approx(80000)
    assert len(store.list_bank_entries("SRC")) == 1


class _FailingUpdateStore(SqlLedgerStore):
    def update_compliance_balance(self, ship_id, year, new_cb):
        raise RuntimeError("connection lost")


def test_failure_mid_transfer_rolls_back_both_entries(db_session, store, add_record):
    add_record("DST", -50000)
    store.append_bank_entry("SRC", 2025, 80000)

    failing = _FailingUpdateStore(db_session)
    with pytest.raises(RuntimeError):
        apply_banked_transfer(failing, "SRC", "DST", 2025, 50000)

    with SessionLocal() as fresh:
        check = SqlLedgerStore(fresh)
        assert check.sum_bank_entries("SRC") == pytest.approx(80000)
        assert check.sum_bank_entries("DST") == 0
        assert check.get_compliance_record("DST", 2025).compliance_balance == pytest.approx(-50000)


def test_non_positive_apply_amount_is_validation_error(store):
    with pytest.raises(ValidationError):
        apply_banked_transfer(store, "SRC", "DST", 2025, 0)


@pytest.mark.parametrize("cb", [1.0, 500.0, 100000.0, 175206.72])
@pytest.mark.parametrize("fraction", [0.01, 0.5, 1.0])
def test_bank_then_apply_restores_balance(cb, fraction):
    amount = cb * fraction
    banked = bank(cb, amount)
    restored = apply_banked_to_deficit(banked.updated_source_cb, banked.transferred_amount)
    assert restored.updated_target_cb == pytest.approx(cb)


def test_apply_to_same_ship_is_refused(store, add_record):
    add_record("SELF", -1000)
    store.append_bank_entry("SELF", 2025, 500)

    for _ in range(3):
        with pytest.raises(BankingError, match="not eligible"):
            apply_banked_transfer(store, "SELF", "SELF", 2025, 500)

    assert store.sum_bank_entries("SELF") == pytest.approx(500)
    assert store.get_compliance_record("SELF", 2025).compliance_balance == pytest.approx(-1000)
    assert len(store.list_bank_entries("SELF")) == 1
