"""Ledger storage collaborator backed by a SQLAlchemy session.

The rules modules only talk to the :class:`LedgerStore` protocol. The
multi-record operations (banked transfers, pool creation) wrap their reads
and writes in ``store.atomic()``: the unit commits on success and rolls
back on any exception, so a half-applied transfer or pool never persists.
Compliance rows read for mutation are locked with SELECT ... FOR UPDATE
where the backend supports it.
"""
from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Iterator, List, Optional, Protocol, Sequence

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from .models import BankEntry, Pool, PoolMember, Route, ShipCompliance
from .rules.compliance import ComplianceBalance, ComplianceStatus, classify_status
from .rules.errors import NotFound
from .rules.pooling import PoolMemberResult

logger = logging.getLogger(__name__)


class LedgerStore(Protocol):
    def atomic(self): ...

    def get_compliance_record(self, ship_id: str, year: int, *, for_update: bool = False) -> ComplianceBalance: ...

    def update_compliance_balance(self, ship_id: str, year: int, new_cb: float) -> None: ...

    def sum_bank_entries(self, ship_id: str) -> float: ...

    def append_bank_entry(self, ship_id: str, year: int, signed_amount: float) -> BankEntry: ...

    def create_pool_atomically(self, year: int, member_results: Sequence[PoolMemberResult]) -> int: ...


def _to_domain(row: ShipCompliance) -> ComplianceBalance:
    return ComplianceBalance(
        ship_id=row.ship_id,
        year=row.year,
        ghg_target=row.ghg_target,
        ghg_actual=row.ghg_actual,
        energy_in_scope_mj=row.energy_in_scope_mj,
        compliance_balance=row.cb_gco2eq,
        status=ComplianceStatus(row.status),
        computed_at=row.computed_at,
    )


class SqlLedgerStore:
    def __init__(self, session: Session):
        self.session = session
        self._depth = 0

    @contextmanager
    def atomic(self) -> Iterator["SqlLedgerStore"]:
        """One commit for everything inside; nested calls join the outer unit."""
        if self._depth:
            yield self
            return
        self._depth = 1
        try:
            yield self
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise
        finally:
            self._depth = 0

    # ------------- Compliance records -------------

    def _current_row(self, ship_id: str, year: int, *, for_update: bool = False) -> Optional[ShipCompliance]:
        q = (
            select(ShipCompliance)
            .where(ShipCompliance.ship_id == ship_id, ShipCompliance.year == year)
            .order_by(ShipCompliance.computed_at.desc(), ShipCompliance.id.desc())
            .limit(1)
        )
        if for_update:
            q = q.with_for_update()
        return self.session.execute(q).scalars().first()

    def get_compliance_record(self, ship_id: str, year: int, *, for_update: bool = False) -> ComplianceBalance:
        row = self._current_row(ship_id, year, for_update=for_update)
        if row is None:
            raise NotFound(f"No compliance record found for ship {ship_id} in year {year}")
        return _to_domain(row)

    def save_compliance_record(self, record: ComplianceBalance) -> int:
        if not record.ship_id:
            raise ValueError("compliance record needs a ship_id to be stored")
        with self.atomic():
            row = ShipCompliance(
                ship_id=record.ship_id,
                year=record.year,
                ghg_target=record.ghg_target,
                ghg_actual=record.ghg_actual,
                energy_in_scope_mj=record.energy_in_scope_mj,
                cb_gco2eq=record.compliance_balance,
                status=record.status.value,
                computed_at=record.computed_at,
            )
            self.session.add(row)
            self.session.flush()
            row_id = row.id
        return row_id

    def update_compliance_balance(self, ship_id: str, year: int, new_cb: float) -> None:
        with self.atomic():
            row = self._current_row(ship_id, year, for_update=True)
            if row is None:
                raise NotFound(f"No compliance record found for ship {ship_id} in year {year}")
            row.cb_gco2eq = new_cb
            row.status = classify_status(new_cb).value
            self.session.flush()

    def list_compliance_records(self, ship_id: str, year: Optional[int] = None) -> List[ComplianceBalance]:
        """Current record per year for ``ship_id`` (only ``year`` when given)."""
        q = select(ShipCompliance).where(ShipCompliance.ship_id == ship_id)
        if year is not None:
            q = q.where(ShipCompliance.year == year)
        q = q.order_by(ShipCompliance.year, ShipCompliance.computed_at.desc(), ShipCompliance.id.desc())

        current: dict[int, ComplianceBalance] = {}
        for row in self.session.execute(q).scalars():
            current.setdefault(row.year, _to_domain(row))
        return list(current.values())

    # ------------- Bank ledger -------------

    def sum_bank_entries(self, ship_id: str) -> float:
        total = self.session.execute(
            select(func.coalesce(func.sum(BankEntry.amount_gco2eq), 0.0)).where(BankEntry.ship_id == ship_id)
        ).scalar_one()
        return float(total)

    def append_bank_entry(self, ship_id: str, year: int, signed_amount: float) -> BankEntry:
        with self.atomic():
            entry = BankEntry(ship_id=ship_id, year=year, amount_gco2eq=signed_amount)
            self.session.add(entry)
            self.session.flush()
        return entry

    def list_bank_entries(self, ship_id: str) -> List[BankEntry]:
        return list(
            self.session.execute(
                select(BankEntry)
                .where(BankEntry.ship_id == ship_id)
                .order_by(BankEntry.created_at.desc(), BankEntry.id.desc())
            ).scalars()
        )

    # ------------- Pools -------------

    def create_pool_atomically(self, year: int, member_results: Sequence[PoolMemberResult]) -> int:
        with self.atomic():
            pool = Pool(
                year=year,
                total_initial_cb=sum(m.cb_before for m in member_results),
                total_adjusted_cb=sum(m.cb_after for m in member_results),
            )
            for m in member_results:
                pool.members.append(
                    PoolMember(ship_id=m.ship_id, ship_name=m.ship_name, cb_before=m.cb_before, cb_after=m.cb_after)
                )
                self.update_compliance_balance(m.ship_id, year, m.cb_after)
            self.session.add(pool)
            self.session.flush()
            pool_id = pool.id
        return pool_id

    def get_pool(self, pool_id: int) -> Pool:
        pool = self.session.get(Pool, pool_id)
        if pool is None:
            raise NotFound(f"Pool {pool_id} not found")
        return pool

    # ------------- Routes -------------

    def list_routes(self) -> List[Route]:
        return list(self.session.execute(select(Route).order_by(Route.year, Route.route_id)).scalars())

    def routes_for_year(self, year: int) -> List[Route]:
        return list(
            self.session.execute(select(Route).where(Route.year == year).order_by(Route.route_id)).scalars()
        )

    def baseline_route(self, year: int) -> Optional[Route]:
        return (
            self.session.execute(select(Route).where(Route.year == year, Route.is_baseline.is_(True)))
            .scalars()
            .first()
        )

    def set_baseline(self, route_id: str) -> Optional[Route]:
        """Make ``route_id`` the only baseline of its year; None if unknown."""
        with self.atomic():
            route = self.session.execute(select(Route).where(Route.route_id == route_id)).scalars().first()
            if route is None:
                return None
            self.session.execute(
                update(Route)
                .where(Route.year == route.year, Route.id != route.id)
                .values(is_baseline=False)
            )
            route.is_baseline = True
            self.session.flush()
        logger.info("Route %s set as baseline for %s", route.route_id, route.year)
        return route
