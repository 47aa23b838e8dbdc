# src/fueleu_ledger/db.py
from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict

from sqlalchemy import create_engine, text
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from .settings import settings

logger = logging.getLogger(__name__)


# psycopg3 uses 'postgresql+psycopg' instead of 'postgresql+psycopg2'
def get_sqlalchemy_url() -> str:
    url = settings.sqlalchemy_url
    if 'postgresql+psycopg2' in url:
        url = url.replace('postgresql+psycopg2', 'postgresql+psycopg')
    elif url.startswith('postgresql://'):
        url = url.replace('postgresql://', 'postgresql+psycopg://')
    elif url.startswith('postgres://'):
        url = url.replace('postgres://', 'postgresql+psycopg://')
    return url


def _engine_options(url: str) -> Dict[str, Any]:
    if url.startswith("sqlite"):
        options: Dict[str, Any] = {"connect_args": {"check_same_thread": False}}
        # A bare in-memory database only lives as long as its connection;
        # share one connection so every session sees the same tables.
        if url in ("sqlite://", "sqlite:///:memory:"):
            options["poolclass"] = StaticPool
        return options
    return {
        "pool_pre_ping": True,
        "pool_recycle": 300,
        "connect_args": {
            "options": "-c statement_timeout=30000",  # 30 second timeout
            # Prevent duplicate prepared statement errors across pooled connections
            # by disabling psycopg's automatic server-side prepared statements.
            "prepare_threshold": 0,
        },
    }


_url = get_sqlalchemy_url()
engine = create_engine(_url, **_engine_options(_url))

SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False, expire_on_commit=False)

_SEED_SCRIPTS = [
    ("routes", "routes.sql"),
]


def _script_statements(script: str) -> list[str]:
    statements: list[str] = []
    for raw in script.split(";"):
        stmt = raw.strip()
        if not stmt:
            continue
        upper = stmt.upper()
        if upper in {"BEGIN", "COMMIT"}:
            continue
        statements.append(stmt)
    return statements


def _run_sql_script(script_path: Path) -> None:
    if not script_path.exists():
        return
    script = script_path.read_text()
    statements = _script_statements(script)
    if not statements:
        return
    with engine.begin() as conn:
        for statement in statements:
            conn.exec_driver_sql(statement)


def _load_seed_data() -> None:
    base_dir = Path(__file__).resolve().parent.parent.parent
    seeds_root = base_dir / "db" / "seeds"
    if not seeds_root.exists():
        return

    with engine.connect() as conn:
        for table_name, script_name in _SEED_SCRIPTS:
            script_path = seeds_root / script_name
            if not script_path.exists():
                continue
            has_rows = conn.execute(text(f"SELECT 1 FROM {table_name} LIMIT 1")).first() is not None
            if has_rows:
                continue
            _run_sql_script(script_path)
            logger.info("Loaded seed data for %s from %s", table_name, script_path.name)


def init_db(*, seed: bool | None = None) -> None:
    # Safe if tables already exist
    from .models import Base

    Base.metadata.create_all(bind=engine)
    if settings.seed_routes if seed is None else seed:
        _load_seed_data()
