from __future__ import annotations

import os
import sys
from pathlib import Path

import pytest

sys.path.append(str(Path(__file__).resolve().parents[1] / "src"))

# Must be set before fueleu_ledger.settings / db are imported.
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["FUELEU_SEED_ROUTES"] = "false"

from fueleu_ledger.db import SessionLocal, engine  # noqa: E402
from fueleu_ledger.models import Base  # noqa: E402
from fueleu_ledger.rules.compliance import ComplianceBalance, classify_status  # noqa: E402
from fueleu_ledger.store import SqlLedgerStore  # noqa: E402


@pytest.fixture
def db_session():
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def store(db_session):
    return SqlLedgerStore(db_session)


@pytest.fixture
def add_record(store):
    """Persist a compliance record with the given CB for (ship_id, year)."""

    def _add(ship_id: str, cb: float, year: int = 2025) -> ComplianceBalance:
        record = ComplianceBalance(
            ship_id=ship_id,
            year=year,
            ghg_target=89.3368,
            ghg_actual=89.3368 - cb / 1_000_000,
            energy_in_scope_mj=1_000_000.0,
            compliance_balance=cb,
            status=classify_status(cb),
        )
        store.save_compliance_record(record)
        return record

    return _add
