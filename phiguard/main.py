"""
phiguard - FastAPI Application Entry Point

PHI protection service: reversible pseudonymization, sealed token maps,
signed audit ledger and the patient identity guard.
"""

import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any

from fastapi import Depends, FastAPI, HTTPException, Query, Request, status
from fastapi.responses import JSONResponse, PlainTextResponse

from phiguard import __version__, config
from phiguard.api.auth import get_current_user, require_user, user_id_of
from phiguard.api.schemas import (
    ConfirmRequest,
    InsertRequest,
    ObserveRequest,
    PseudonymizeRequest,
    RehydrateRequest,
    validate_encounter_id,
)
from phiguard.audit.events import log_note_insertion, log_security_alert
from phiguard.audit.ledger import AuditLedger
from phiguard.crypto.fingerprint import extract_demographics, fingerprint_patient
from phiguard.crypto.keys import KeyManager
from phiguard.encounter import EncounterRegistry
from phiguard.errors import (
    DecryptionError,
    KeyNotFoundError,
    LedgerWriteError,
    StorageError,
)
from phiguard.guard.identity import IdentityGuard
from phiguard.observability.metrics import get_metrics_text, reset_metrics
from phiguard.storage.kv import (
    DURABLE_PREFIX,
    SESSION_PREFIX,
    InMemoryStore,
    KeyValueStore,
    RedisStore,
    SealedMapStore,
)

# Configure logging
logging.basicConfig(
    level=config.LOG_LEVEL,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


def _build_stores() -> tuple[KeyValueStore, KeyValueStore]:
    if config.REDIS_URL:
        logger.info("Using Redis key-value stores")
        return (
            RedisStore(config.REDIS_URL, SESSION_PREFIX, config.SESSION_STORE_TTL_SECONDS),
            RedisStore(config.REDIS_URL, DURABLE_PREFIX),
        )
    logger.info("REDIS_URL not set; using in-memory key-value stores")
    return InMemoryStore(), InMemoryStore()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager for startup/shutdown events."""
    logger.info("Starting phiguard API v%s", __version__)

    ledger = AuditLedger()
    session_store, durable_store = _build_stores()
    app.state.ledger = ledger
    app.state.session_store = session_store
    app.state.durable_store = durable_store
    app.state.guard = IdentityGuard(session_store, durable_store, ledger=ledger)
    app.state.registry = EncounterRegistry(
        ledger=ledger,
        map_store=SealedMapStore(durable_store),
        keys=KeyManager(),
    )
    logger.info("Audit ledger at %s (strict=%s)", ledger.path, ledger.strict)

    yield

    # Shutdown: end open encounters and drop every key
    logger.info("Shutting down phiguard API")
    await app.state.registry.teardown()
    await session_store.close()
    await durable_store.close()


app = FastAPI(
    title="phiguard",
    description="PHI pseudonymization, audit ledger and identity guard",
    version=__version__,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json",
    lifespan=lifespan,
)


def _client_ip(request: Request) -> str | None:
    return request.client.host if request.client else None


# ============================================
# Health Check Endpoints
# ============================================


@app.get("/health", tags=["Health"])
async def health_check() -> dict[str, Any]:
    """Health check endpoint."""
    return {
        "status": "healthy",
        "version": __version__,
        "service": "phiguard-api",
    }


@app.get("/ready", tags=["Health"])
async def readiness_check(request: Request) -> dict[str, Any]:
    """Readiness check with dependency status."""
    ledger: AuditLedger | None = getattr(request.app.state, "ledger", None)
    store: KeyValueStore | None = getattr(request.app.state, "durable_store", None)

    store_status = "unavailable"
    if isinstance(store, InMemoryStore):
        store_status = "in_memory"
    elif store is not None:
        try:
            await store.get("ready_probe")
            store_status = "ok"
        except StorageError as e:
            logger.warning("Readiness store probe failed: %s", e)
            store_status = "error"

    ledger_status = "unavailable"
    if ledger is not None:
        ledger_status = "ok" if ledger.path.parent.exists() else "degraded"

    return {
        "ready": store_status in ("ok", "in_memory") and ledger_status != "unavailable",
        "checks": {"store": store_status, "ledger": ledger_status},
    }


# ============================================
# PHI Routes
# ============================================


@app.post("/api/v1/pseudonymize", tags=["PHI"])
async def pseudonymize_endpoint(
    body: PseudonymizeRequest,
    request: Request,
    user: dict[str, Any] | None = Depends(get_current_user),
) -> dict[str, Any]:
    """
    Tokenize transcript text into the encounter's token map.

    The map itself never leaves the process; it is sealed and stored.
    Only the tokenized text and per-type counts are returned.
    """
    registry: EncounterRegistry = request.app.state.registry
    session = await registry.open(
        body.encounter_id, user_id=user_id_of(user), ip_address=_client_ip(request)
    )

    if not config.ENABLE_LOCAL_PHI_REDACTION:
        logger.warning("Local PHI redaction disabled; returning text unchanged")
        return {
            "encounter_id": body.encounter_id,
            "text": body.text,
            "redacted": False,
            "phi_types_count": {},
            "warnings": ["local_phi_redaction_disabled"],
        }

    outcome = await session.redact(body.text)
    return {
        "encounter_id": body.encounter_id,
        "text": outcome.text,
        "redacted": True,
        "phi_types_count": outcome.token_map.stats(),
        "new_tokens": outcome.new_tokens,
        "warnings": outcome.warnings,
    }


@app.post("/api/v1/rehydrate", tags=["PHI"])
async def rehydrate_endpoint(
    body: RehydrateRequest,
    request: Request,
    user: dict[str, Any] = Depends(require_user),
) -> dict[str, Any]:
    """Restore tokens in text using the encounter's active map. Returns PHI."""
    registry: EncounterRegistry = request.app.state.registry
    session = registry.get(body.encounter_id)
    return {"encounter_id": body.encounter_id, "text": await session.rehydrate(body.text)}


@app.post("/api/v1/encounters/{encounter_id}/end", tags=["PHI"])
async def end_encounter_endpoint(
    encounter_id: str,
    request: Request,
    user: dict[str, Any] = Depends(require_user),
) -> dict[str, Any]:
    """Discard the encounter's key and sealed map."""
    try:
        encounter_id = validate_encounter_id(encounter_id)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e)) from e

    registry: EncounterRegistry = request.app.state.registry
    if not await registry.end(encounter_id, user_id=user_id_of(user)):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Encounter {encounter_id} is not active",
        )
    return {"encounter_id": encounter_id, "status": "ended"}


# ============================================
# Audit Routes
# ============================================


@app.get("/api/v1/audit/logs", tags=["Audit"])
async def audit_logs_endpoint(
    request: Request,
    user: dict[str, Any] = Depends(require_user),
    encounter_id: str | None = None,
    event_type: str | None = None,
    start_date: datetime | None = None,
    end_date: datetime | None = None,
    limit: int = Query(default=1000, ge=1, le=10000),
) -> dict[str, Any]:
    """Query the audit ledger, newest first."""
    ledger: AuditLedger = request.app.state.ledger
    entries = await ledger.query(
        encounter_id=encounter_id,
        event_type=event_type,
        start_date=start_date,
        end_date=end_date,
        limit=limit,
    )
    return {
        "count": len(entries),
        "entries": [e.model_dump(by_alias=True) for e in entries],
    }


@app.get("/api/v1/audit/verify", tags=["Audit"])
async def audit_verify_endpoint(
    request: Request,
    user: dict[str, Any] = Depends(require_user),
) -> dict[str, Any]:
    """Recompute every ledger signature."""
    ledger: AuditLedger = request.app.state.ledger
    report = await ledger.verify_integrity()
    if report.invalid:
        await log_security_alert(
            ledger,
            "Audit ledger integrity violation",
            "high",
            {"invalid": report.invalid, "total": report.total},
        )
    return {
        "valid": report.valid,
        "invalid": report.invalid,
        "total": report.total,
        "invalid_lines": report.invalid_lines,
    }


# ============================================
# Identity Guard Routes
# ============================================


@app.post("/api/v1/guard/observe", tags=["Guard"])
async def guard_observe_endpoint(body: ObserveRequest, request: Request) -> dict[str, Any]:
    """Record the patient context currently on screen."""
    fp, preview = body.fp, body.preview
    if fp is None:
        if not body.page_text:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Either fp or page_text is required",
            )
        derived = fingerprint_patient(
            extract_demographics(body.page_text), secret=config.FINGERPRINT_SECRET
        )
        fp, preview = derived.fp, derived.preview

    guard: IdentityGuard = request.app.state.guard
    state = await guard.observe(fp, preview, body.context_id)
    return {"state": state.value, "fp": fp, "preview": preview}


@app.post("/api/v1/guard/confirm", tags=["Guard"])
async def guard_confirm_endpoint(
    body: ConfirmRequest,
    request: Request,
    user: dict[str, Any] = Depends(require_user),
) -> dict[str, Any]:
    guard: IdentityGuard = request.app.state.guard
    state = await guard.confirm(body.fp, body.preview)
    return {"state": state.value, "fp": body.fp}


@app.post("/api/v1/guard/clear", tags=["Guard"])
async def guard_clear_endpoint(
    request: Request,
    user: dict[str, Any] = Depends(require_user),
) -> dict[str, Any]:
    guard: IdentityGuard = request.app.state.guard
    state = await guard.clear()
    return {"state": state.value}


@app.get("/api/v1/guard/check", tags=["Guard"])
async def guard_check_endpoint(request: Request) -> dict[str, Any]:
    guard: IdentityGuard = request.app.state.guard
    return (await guard.check_before_write()).to_dict()


@app.post("/api/v1/insert", tags=["Guard"])
async def insert_endpoint(
    body: InsertRequest,
    request: Request,
    user: dict[str, Any] = Depends(require_user),
):
    """
    Gate for writing a composed note into the chart.

    Sections are rehydrated, then the guard is checked again immediately
    before the note is released, since the observed patient may have
    changed while rehydration ran.
    """
    guard: IdentityGuard = request.app.state.guard
    registry: EncounterRegistry = request.app.state.registry

    decision = await guard.check_before_write()
    if not decision.allowed:
        return JSONResponse(status_code=status.HTTP_409_CONFLICT, content=decision.to_dict())

    session = registry.get(body.encounter_id)
    restored = {name: await session.rehydrate(text) for name, text in body.sections.items()}

    decision = await guard.check_before_write()
    if not decision.allowed:
        return JSONResponse(status_code=status.HTTP_409_CONFLICT, content=decision.to_dict())

    result = await log_note_insertion(
        request.app.state.ledger,
        body.encounter_id,
        sections=sorted(restored),
        user_id=user_id_of(user),
        patient_fingerprint=decision.fingerprint,
    )
    return {
        "ok": True,
        "encounter_id": body.encounter_id,
        "sections": restored,
        "preview": decision.preview,
        "warnings": [result.warning] if result.warning else [],
    }


# ============================================
# Metrics Endpoint
# ============================================


@app.get("/metrics", tags=["Monitoring"])
async def metrics_endpoint():
    """Prometheus metrics endpoint."""
    return PlainTextResponse(content=get_metrics_text(), media_type="text/plain")


@app.post("/metrics/reset", tags=["Monitoring"])
async def reset_metrics_endpoint():
    """Reset all metrics counters (for testing/demo)."""
    reset_metrics()
    return {"status": "metrics_reset"}


# ============================================
# Exception Handlers
# ============================================


@app.exception_handler(DecryptionError)
async def decryption_error_handler(request: Request, exc: DecryptionError):
    logger.error("Sealed map could not be opened: %s", exc)
    return JSONResponse(
        status_code=422,
        content={"error": "decryption_failed", "detail": str(exc)},
    )


@app.exception_handler(KeyNotFoundError)
async def key_not_found_handler(request: Request, exc: KeyNotFoundError):
    return JSONResponse(
        status_code=status.HTTP_404_NOT_FOUND,
        content={"error": "encounter_not_found", "detail": str(exc)},
    )


@app.exception_handler(LedgerWriteError)
@app.exception_handler(StorageError)
async def unavailable_handler(request: Request, exc: Exception):
    logger.error("Backend unavailable: %s", exc)
    return JSONResponse(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        content={"error": "backend_unavailable", "detail": str(exc)},
    )


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Global exception handler for unhandled errors."""
    logger.exception("Unhandled exception: %s", exc)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "error": "Internal server error",
            "detail": str(exc) if app.debug else "An unexpected error occurred",
        },
    )


# ============================================
# Main Entry Point
# ============================================


def main():
    """Run the application using uvicorn."""
    import uvicorn

    uvicorn.run(
        "phiguard.main:app",
        host="0.0.0.0",
        port=8000,
    )


if __name__ == "__main__":
    main()
