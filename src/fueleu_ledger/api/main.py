from __future__ import annotations

import os
import logging
from typing import Any, Dict

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import text

from .routes import router
from ..db import SessionLocal, init_db
from ..rules.constants import default_table
from ..settings import settings

# ---------------- Logging ----------------
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger("fueleu-api")

API_VERSION = "1.0.0"

# ---------- App ----------
app = FastAPI(
    title="FuelEU Compliance Ledger",
    version=API_VERSION,
    description="GHG intensity compliance balance, route comparison, banking and pooling",
    docs_url="/api/docs",
    redoc_url="/api/redoc",
)

app.include_router(router)

# ----- CORS -----
allow_origins = settings.origins
allow_all = (len(allow_origins) == 1 and allow_origins[0] == "*")
app.add_middleware(
    CORSMiddleware,
    allow_origins=allow_origins,
    # Browsers disallow credentials with "*"; use regex echo when fully open.
    allow_credentials=not allow_all,
    allow_methods=["*"],
    allow_headers=["*"],
    allow_origin_regex=".*" if allow_all else None,
)


# ----- Startup -----
@app.on_event("startup")
def _startup():
    """Create tables and load the route seed."""
    try:
        init_db()
        logger.info("Startup complete, DB initialized.")
    except Exception:
        logger.exception("DB init failed during startup; continuing without blocking app.")


# ----- System -----
@app.get("/health", tags=["System"])
def health() -> Dict[str, Any]:
    db_ok = True
    try:
        with SessionLocal() as db:
            db.execute(text("SELECT 1")).scalar()
    except Exception:
        db_ok = False
    table = default_table()
    return {
        "ok": True,
        "version": API_VERSION,
        "db_ok": db_ok,
        "strict_target_years": settings.strict_target_years,
        "target_years": sorted(table.targets),
        "fuel_types": sorted(table.fuels),
    }


# ----- Dev entrypoint -----
if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port, reload=True)
