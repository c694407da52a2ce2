from sqlalchemy import text

from stockledger.core.errors import LedgerError
from stockledger.core.observability import (
    http_exception_handler,
    ledger_exception_handler,
    request_logging_middleware,
    setup_observability,
    unhandled_exception_handler,
    validation_exception_handler,
)
from fastapi import FastAPI, HTTPException
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware

from stockledger.core.config import settings
from stockledger.db.session import engine
from stockledger.routers import balances, baseline, integrity, items, locations, movements

app = FastAPI(
    title=settings.app_name,
    version="0.1.0",
    description=(
        "Multi-location stock ledger for field service operations.\n\n"
        "Every stock change is an append-only ledger entry; balances per item and location are a\n"
        "projection of that ledger. Movements are idempotent on `idempotency_key`.\n\n"
        "Swagger quick test flow:\n"
        "1. Obtain a bearer token from the host platform (claims `sub` and `role`).\n"
        "2. Click **Authorize** and paste the token.\n"
        "3. Call `POST /locations/ensure-core`, create items, then record movements."
    ),
    swagger_ui_parameters={
        "persistAuthorization": True,
        "displayRequestDuration": True,
        "defaultModelsExpandDepth": 1,
    },
    openapi_tags=[
        {"name": "health", "description": "Service status and quick links."},
        {"name": "locations", "description": "Warehouse, loading bay, vehicle and project locations."},
        {"name": "items", "description": "Stock item catalog."},
        {"name": "movements", "description": "Adjustments, transfers, consumption, receipts and ledger history."},
        {"name": "balances", "description": "Projected on-hand quantities."},
        {"name": "baseline", "description": "One-time stocktake reconciliation."},
        {"name": "integrity", "description": "Location and projection health checks and repairs."},
    ],
)

setup_observability()
app.middleware("http")(request_logging_middleware)
app.add_exception_handler(RequestValidationError, validation_exception_handler)
app.add_exception_handler(LedgerError, ledger_exception_handler)
app.add_exception_handler(HTTPException, http_exception_handler)
app.add_exception_handler(Exception, unhandled_exception_handler)

cors_origins = settings.cors_origins or ["http://localhost:3000"]
allow_all_origins = "*" in cors_origins
env_value = settings.env.lower().strip()
allow_origin_regex = settings.cors_origin_regex

if (
    not allow_origin_regex
    and env_value in {"dev", "development", "staging", "stage"}
):
    # Local tooling runs on dynamic localhost ports.
    allow_origin_regex = r"^https?://(localhost|127\.0\.0\.1)(:\d+)?$"

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"] if allow_all_origins else cors_origins,
    allow_origin_regex=allow_origin_regex,
    allow_credentials=not allow_all_origins,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(locations.router)
app.include_router(items.router)
app.include_router(movements.router)
app.include_router(balances.router)
app.include_router(baseline.router)
app.include_router(integrity.router)


@app.get("/", tags=["health"])
def root():
    return {
        "app": settings.app_name,
        "docs": "/docs",
        "redoc": "/redoc",
        "health": "/health",
        "ready": "/ready",
    }


@app.get("/health", tags=["health"])
def health():
    return {"ok": True}


@app.get("/ready", tags=["health"])
def ready():
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
    except Exception:
        return {"ok": False}
    return {"ok": True}
