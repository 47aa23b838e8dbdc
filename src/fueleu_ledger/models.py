from __future__ import annotations
from typing import Optional
import datetime

from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship
from sqlalchemy import String, Boolean, Float, Integer, DateTime, ForeignKey, Index, func


class Base(DeclarativeBase):
    pass


class Route(Base):
    __tablename__ = "routes"

    id: Mapped[int] = mapped_column(primary_key=True)
    route_id: Mapped[str] = mapped_column(String(32), unique=True)
    vessel_type: Mapped[str] = mapped_column(String(48))
    fuel_type: Mapped[str] = mapped_column(String(24))
    year: Mapped[int] = mapped_column(Integer, index=True)
    ghg_intensity: Mapped[float] = mapped_column(Float)       # gCO2e/MJ
    fuel_consumption: Mapped[float] = mapped_column(Float)    # tonnes
    distance: Mapped[float] = mapped_column(Float)            # km
    total_emissions: Mapped[float] = mapped_column(Float)     # tonnes
    is_baseline: Mapped[bool] = mapped_column(Boolean, default=False)


class ShipCompliance(Base):
    """
    Compliance balance per ship and year. Several rows may exist for the same
    (ship_id, year); the most recently computed one is current.
    """

    __tablename__ = "ship_compliance"
    __table_args__ = (Index("ix_ship_compliance_ship_year", "ship_id", "year"),)

    id: Mapped[int] = mapped_column(primary_key=True)
    ship_id: Mapped[str] = mapped_column(String(64))
    year: Mapped[int] = mapped_column(Integer)
    ghg_target: Mapped[Optional[float]] = mapped_column(Float)
    ghg_actual: Mapped[Optional[float]] = mapped_column(Float)
    energy_in_scope_mj: Mapped[Optional[float]] = mapped_column(Float)
    cb_gco2eq: Mapped[float] = mapped_column(Float)
    status: Mapped[str] = mapped_column(String(12))  # SURPLUS/DEFICIT/NEUTRAL
    computed_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())


class BankEntry(Base):
    """Append-only banking ledger; a ship's banked balance is SUM(amount_gco2eq)."""

    __tablename__ = "bank_entries"

    id: Mapped[int] = mapped_column(primary_key=True)
    ship_id: Mapped[str] = mapped_column(String(64), index=True)
    year: Mapped[int] = mapped_column(Integer)
    amount_gco2eq: Mapped[float] = mapped_column(Float)  # + deposit / - withdrawal
    created_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())


class Pool(Base):
    __tablename__ = "pools"

    id: Mapped[int] = mapped_column(primary_key=True)
    year: Mapped[int] = mapped_column(Integer, index=True)
    total_initial_cb: Mapped[float] = mapped_column(Float)
    total_adjusted_cb: Mapped[float] = mapped_column(Float)
    created_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    members: Mapped[list["PoolMember"]] = relationship(back_populates="pool", cascade="all, delete-orphan")


class PoolMember(Base):
    __tablename__ = "pool_members"

    id: Mapped[int] = mapped_column(primary_key=True)
    pool_id: Mapped[int] = mapped_column(ForeignKey("pools.id", ondelete="CASCADE"))
    ship_id: Mapped[str] = mapped_column(String(64))
    ship_name: Mapped[Optional[str]] = mapped_column(String(200))
    cb_before: Mapped[float] = mapped_column(Float)
    cb_after: Mapped[float] = mapped_column(Float)

    pool: Mapped[Pool] = relationship(back_populates="members")
