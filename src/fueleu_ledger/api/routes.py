# src/fueleu_ledger/api/routes.py
"""
FuelEU ledger endpoints: route comparison, compliance balance, banking, pooling.

Notes:
- Domain failures map to 400 (validation, banking, insufficient funds, pooling)
  or 404 (missing compliance record / route / baseline).
- Banking apply and pool creation run in one store transaction each.
"""

from __future__ import annotations

import logging
from dataclasses import asdict
from datetime import date
from functools import lru_cache
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from ..db import SessionLocal
from ..rules.banking import apply_banked_transfer, bank_surplus
from ..rules.comparison import compare
from ..rules.compliance import ComplianceCalculator, FuelRecord, wind_reward_factor
from ..rules.constants import default_table
from ..rules.errors import DomainError, NotFound, PoolingError
from ..rules.pooling import create_pool
from ..settings import settings
from ..store import SqlLedgerStore

logger = logging.getLogger("fueleu-api")

router = APIRouter()

# ============ Pydantic Models ============

class FuelRecordIn(BaseModel):
    fuel_type: str = Field(..., examples=["LNG"])
    fuel_tons: Optional[float] = Field(None, examples=[1000])
    energy_mj: Optional[float] = Field(None, examples=[None])
    methane_slip_fraction: Optional[float] = Field(None, examples=[0.03])


class IntensityRequest(BaseModel):
    ship_id: str = Field(..., examples=["IMO9321483"])
    year: int = Field(..., ge=2000, examples=[2025])
    fuels: List[FuelRecordIn]
    wind_factor: float = Field(1.0, description="Multiplier applied to the aggregate intensity")
    pwind_over_pprop: Optional[float] = Field(
        None, description="Wind-assist power ratio; overrides wind_factor with the Annex I reward factor"
    )


class BankRequest(BaseModel):
    ship_id: str = Field(..., examples=["IMO9321483"])
    year: int = Field(..., ge=2000, examples=[2025])
    amount: float = Field(..., examples=[50000])


class ApplyRequest(BaseModel):
    source_ship_id: str = Field(..., examples=["IMO9321483"])
    target_ship_id: str = Field(..., examples=["IMO9456721"])
    year: int = Field(..., ge=2000, examples=[2025])
    amount: float = Field(..., examples=[25000])


class PoolShipIn(BaseModel):
    ship_id: str = Field(..., min_length=1)
    ship_name: Optional[str] = None


class PoolRequest(BaseModel):
    year: int = Field(..., ge=2000, examples=[2025])
    ships: List[PoolShipIn]


# ============ Dependencies ============

def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_store(db: Session = Depends(get_db)) -> SqlLedgerStore:
    return SqlLedgerStore(db)


@lru_cache(maxsize=1)
def get_calculator() -> ComplianceCalculator:
    table = default_table()
    if settings.strict_target_years:
        table = table.with_strict_years()
    return ComplianceCalculator(table)


# ============ Helpers ============

def _http_error(exc: DomainError) -> HTTPException:
    if isinstance(exc, NotFound):
        return HTTPException(status_code=404, detail=str(exc))
    if isinstance(exc, PoolingError):
        return HTTPException(status_code=400, detail={"message": str(exc), "errors": exc.errors})
    return HTTPException(status_code=400, detail=str(exc))


def _record_out(record) -> Dict[str, Any]:
    return {
        "ship_id": record.ship_id,
        "year": record.year,
        "ghg_target": record.ghg_target,
        "ghg_actual": record.ghg_actual,
        "energy_in_scope_mj": record.energy_in_scope_mj,
        "compliance_balance": record.compliance_balance,
        "status": record.status.value,
        "is_compliant": record.is_compliant,
        "computed_at": record.computed_at.isoformat() if record.computed_at else None,
    }


def _route_out(route) -> Dict[str, Any]:
    return {
        "id": route.id,
        "route_id": route.route_id,
        "vessel_type": route.vessel_type,
        "fuel_type": route.fuel_type,
        "year": route.year,
        "ghg_intensity": route.ghg_intensity,
        "fuel_consumption": route.fuel_consumption,
        "distance": route.distance,
        "total_emissions": route.total_emissions,
        "is_baseline": route.is_baseline,
    }


# ============ Routes ============

@router.get("/routes", tags=["Routes"])
def list_routes(store: SqlLedgerStore = Depends(get_store)) -> Dict[str, Any]:
    routes = store.list_routes()
    return {"data": [_route_out(r) for r in routes], "count": len(routes)}


@router.post("/routes/{route_id}/baseline", tags=["Routes"])
def set_baseline(route_id: str, store: SqlLedgerStore = Depends(get_store)) -> Dict[str, Any]:
    route = store.set_baseline(route_id)
    if route is None:
        raise HTTPException(status_code=404, detail=f"Route {route_id} not found")
    return {
        "message": f"Route {route_id} set as baseline for year {route.year}",
        "data": _route_out(route),
    }


@router.get("/routes/comparison", tags=["Routes"])
def route_comparison(
    year: Optional[int] = Query(None, ge=2000),
    store: SqlLedgerStore = Depends(get_store),
) -> Dict[str, Any]:
    if year is None:
        year = date.today().year
    baseline = store.baseline_route(year)
    if baseline is None:
        raise HTTPException(status_code=404, detail=f"No baseline found for year {year}")
    try:
        comparisons = [
            compare(r.route_id, baseline.ghg_intensity, r.ghg_intensity)
            for r in store.routes_for_year(year)
            if not r.is_baseline
        ]
    except DomainError as exc:
        raise _http_error(exc)
    return {
        "year": year,
        "baseline": {"route_id": baseline.route_id, "ghg_intensity": baseline.ghg_intensity},
        "comparisons": [asdict(c) for c in comparisons],
    }


# ============ Compliance ============

@router.get("/compliance/cb", tags=["Compliance"])
def compute_compliance_balance(
    ship_id: str = Query(..., min_length=1),
    year: int = Query(..., ge=2000),
    ghg_actual: float = Query(..., description="Actual GHG intensity (gCO2e/MJ)"),
    fuel_consumption: float = Query(..., description="Fuel consumption in tonnes"),
    fuel_type: Optional[str] = Query(None, description="Fuel type; LCV-based energy when given"),
    store: SqlLedgerStore = Depends(get_store),
    calculator: ComplianceCalculator = Depends(get_calculator),
) -> Dict[str, Any]:
    try:
        if fuel_type:
            energy = calculator.resolve_energy(FuelRecord(fuel_type=fuel_type, fuel_tons=fuel_consumption))
        else:
            energy = calculator.energy_from_fuel_mass(fuel_consumption)
        record = calculator.compute_for_year(year, ghg_actual, energy, ship_id=ship_id)
        store.save_compliance_record(record)
    except DomainError as exc:
        raise _http_error(exc)
    except Exception:
        logger.exception("Compliance balance calculation failed")
        raise HTTPException(status_code=500, detail="compliance calculation failed")
    return {"data": _record_out(record)}


@router.post("/compliance/intensity", tags=["Compliance"])
def compute_from_fuels(
    body: IntensityRequest,
    store: SqlLedgerStore = Depends(get_store),
    calculator: ComplianceCalculator = Depends(get_calculator),
) -> Dict[str, Any]:
    records = [FuelRecord(**f.model_dump()) for f in body.fuels]
    wind = body.wind_factor
    try:
        if body.pwind_over_pprop is not None:
            wind = wind_reward_factor(body.pwind_over_pprop)
        actual = calculator.aggregate_intensity(records, wind)
        energy = sum(calculator.resolve_energy(r) for r in records)
        record = calculator.compute_for_year(body.year, actual, energy, ship_id=body.ship_id)
        store.save_compliance_record(record)
    except DomainError as exc:
        raise _http_error(exc)
    except Exception:
        logger.exception("Fuel intensity calculation failed")
        raise HTTPException(status_code=500, detail="intensity calculation failed")
    return {"data": _record_out(record), "wind_factor": wind}


@router.get("/compliance/adjusted-cb", tags=["Compliance"])
def adjusted_compliance_balance(
    ship_id: str = Query(..., min_length=1),
    year: Optional[int] = Query(None),
    store: SqlLedgerStore = Depends(get_store),
) -> Dict[str, Any]:
    records = store.list_compliance_records(ship_id, year)
    return {"data": [_record_out(r) for r in records], "count": len(records)}


# ============ Banking ============

@router.get("/banking/records", tags=["Banking"])
def banking_records(
    ship_id: str = Query(..., min_length=1),
    store: SqlLedgerStore = Depends(get_store),
) -> Dict[str, Any]:
    entries = store.list_bank_entries(ship_id)
    return {
        "ship_id": ship_id,
        "current_balance": store.sum_bank_entries(ship_id),
        "records": [
            {
                "id": e.id,
                "year": e.year,
                "amount": e.amount_gco2eq,
                "created_at": e.created_at.isoformat() if e.created_at else None,
            }
            for e in entries
        ],
    }


@router.post("/banking/bank", tags=["Banking"])
def bank_compliance_balance(body: BankRequest, store: SqlLedgerStore = Depends(get_store)) -> Dict[str, Any]:
    try:
        deposit = bank_surplus(store, body.ship_id, body.year, body.amount)
    except DomainError as exc:
        raise _http_error(exc)
    except Exception:
        logger.exception("Banking failed")
        raise HTTPException(status_code=500, detail="banking failed")
    return {
        "message": f"Successfully banked {deposit.banked_amount} gCO2e",
        "data": asdict(deposit),
    }


@router.post("/banking/apply", status_code=201, tags=["Banking"])
def apply_banked(body: ApplyRequest, store: SqlLedgerStore = Depends(get_store)) -> Dict[str, Any]:
    try:
        outcome = apply_banked_transfer(store, body.source_ship_id, body.target_ship_id, body.year, body.amount)
    except DomainError as exc:
        raise _http_error(exc)
    except Exception:
        logger.exception("Banked CB apply failed")
        raise HTTPException(status_code=500, detail="banking apply failed")
    return {
        "source_ship": {"ship_id": outcome.source_ship_id, "remaining_bank": outcome.source_remaining_balance},
        "target_ship": {"ship_id": outcome.target_ship_id, "cb_after": outcome.target_new_cb},
        "transfer": {"amount": outcome.applied_amount, "status": "applied"},
    }


# ============ Pools ============

@router.post("/pools", status_code=201, tags=["Pools"])
def create_compliance_pool(body: PoolRequest, store: SqlLedgerStore = Depends(get_store)) -> Dict[str, Any]:
    try:
        creation = create_pool(store, body.year, [(s.ship_id, s.ship_name) for s in body.ships])
    except DomainError as exc:
        raise _http_error(exc)
    except Exception:
        logger.exception("Pool creation failed")
        raise HTTPException(status_code=500, detail="pool creation failed")
    return {
        "pool_id": creation.pool_id,
        "year": creation.year,
        "members": [
            {
                "ship_id": m.ship_id,
                "ship_name": m.ship_name,
                "before": m.cb_before,
                "after": m.cb_after,
                "contribution": m.contribution,
            }
            for m in creation.members
        ],
        "status": "pool_created",
    }
