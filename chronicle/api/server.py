"""
Chronicle: Evolution & Consistency API Server
=============================================

Request/response surface over the EvolutionEngine. One engine per
process, created in the lifespan hook from ChronicleConfig.from_env().

Endpoints (all under /api/v1/projects/{project_id}):
- GET    /entities/{entity_id}/snapshots         -> ordered history
- POST   /entities/{entity_id}/snapshots         -> append (backfill flag)
- POST   /entities/{entity_id}/states            -> record full state
- GET    /entities/{entity_id}/state             -> latest materialized state
- GET    /entities/{entity_id}/chapters/{n}/state
- GET    /entities/{entity_id}/track             -> evolution track
- GET    /snapshots/{snapshot_id}[?materialize=true]
- GET    /compare?from_id=&to_id=                -> sorted field changes
- GET    /warnings/count, GET /warnings, POST /warnings
- POST   /warnings/{id}/resolve | /dismiss, /warnings/bulk-resolve | bulk-dismiss
- DELETE /entities/{entity_id}, DELETE the project itself

ERROR MAPPING:
- unknown id                          -> 404
- ordering / duplicate / terminal     -> 409
- malformed input                     -> 422
- storage unavailable (retryable)     -> 503
- corrupt storage record              -> 500

Usage:
    uvicorn chronicle.api.server:app --reload
"""
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from ..config import ChronicleConfig
from ..contracts.base import EntityType
from ..contracts.errors import (
    AlreadyTerminalError,
    ChronicleError,
    DuplicateSnapshotError,
    MissingBaseKeyframeError,
    NotFoundError,
    OutOfOrderError,
    StorageUnavailableError,
)
from ..contracts.snapshots import ChangeType
from ..contracts.warnings import Severity, WarningType
from ..engine import EvolutionEngine
from ..store import ProjectStore
from .mapper import (
    changes_to_dto,
    counts_to_dto,
    draft_from_body,
    snapshot_from_body,
    snapshot_to_dto,
    track_point_to_dto,
    warning_to_dto,
)
from .schemas import BulkIn, ResolveIn, SnapshotIn, StateIn, WarningIn

logger = logging.getLogger(__name__)

# =============================================================================
# INFRASTRUCTURE SETUP
# =============================================================================

# Global engine instance
engine_instance: Optional[EvolutionEngine] = None


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Initialize the engine on startup."""
    global engine_instance

    config = ChronicleConfig.from_env()
    logger.info(
        "Initializing engine (storage=%s, keyframe_interval=%d)",
        config.storage.backend_type,
        config.snapshot_log.keyframe_interval,
    )
    engine_instance = EvolutionEngine(config)

    yield

    logger.info("Shutting down engine")
    engine_instance = None


app = FastAPI(
    title="Chronicle API",
    version="0.1.0",
    description="Narrative entity evolution snapshots and consistency warnings",
    lifespan=lifespan
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["GET", "POST", "DELETE"],
    allow_headers=["*"],
)


def _engine() -> EvolutionEngine:
    if engine_instance is None:
        raise HTTPException(status_code=503, detail="Engine not initialized")
    return engine_instance


def _store(project_id: str) -> ProjectStore:
    return _engine().project(project_id)


# =============================================================================
# ERROR MAPPING
# =============================================================================

_STATUS_BY_ERROR = (
    (NotFoundError, 404),
    (OutOfOrderError, 409),
    (MissingBaseKeyframeError, 409),
    (DuplicateSnapshotError, 409),
    (AlreadyTerminalError, 409),
    (StorageUnavailableError, 503),
)


def _status_for(error: ChronicleError) -> int:
    for error_class, status in _STATUS_BY_ERROR:
        if isinstance(error, error_class):
            return status
    return 500


@app.exception_handler(ChronicleError)
async def chronicle_error_handler(request: Request, exc: ChronicleError):
    status = _status_for(exc)
    if status >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc)
    if engine_instance is not None:
        engine_instance.get_observability().log_error("api", exc.error, subject_id=request.url.path)
    return JSONResponse(
        status_code=status,
        content={
            "error": exc.error.code.name,
            "message": exc.error.message,
            "retryable": exc.retryable,
            "context": dict(exc.error.context),
        },
    )


@app.exception_handler(ValueError)
async def value_error_handler(request: Request, exc: ValueError):
    return JSONResponse(
        status_code=422,
        content={"error": "INVALID_REQUEST", "message": str(exc)},
    )


def _parse_severity(raw: Optional[str]) -> Optional[Severity]:
    return Severity(raw.strip().upper()) if raw else None


# =============================================================================
# ENDPOINTS
# =============================================================================

@app.get("/health")
async def health_check():
    """System status."""
    return _engine().health()


# -- snapshots ---------------------------------------------------------------

@app.get("/api/v1/projects/{project_id}/entities/{entity_id}/snapshots")
async def list_snapshots(project_id: str, entity_id: str):
    """Entity history, ascending log order."""
    snapshots = _store(project_id).get_snapshots(entity_id)
    return {"entity_id": entity_id, "snapshots": [snapshot_to_dto(s) for s in snapshots]}


@app.post("/api/v1/projects/{project_id}/entities/{entity_id}/snapshots", status_code=201)
async def append_snapshot(project_id: str, entity_id: str, body: SnapshotIn):
    snapshot = snapshot_from_body(project_id, entity_id, body)
    stored = _store(project_id).append_snapshot(snapshot, backfill=body.backfill)
    return snapshot_to_dto(stored)


@app.post("/api/v1/projects/{project_id}/entities/{entity_id}/states", status_code=201)
async def record_state(project_id: str, entity_id: str, body: StateIn):
    change_type = ChangeType(body.change_type.upper()) if body.change_type else None
    stored = _store(project_id).record_state(
        entity_id,
        EntityType.parse(body.entity_type),
        body.state,
        change_type=change_type,
        change_reason=body.change_reason,
        ai_confidence=body.ai_confidence,
        chapter_order=body.chapter_order,
        chapter_id=body.chapter_id,
        source_text=body.source_text,
    )
    return snapshot_to_dto(stored)


@app.get("/api/v1/projects/{project_id}/entities/{entity_id}/state")
async def latest_state(project_id: str, entity_id: str):
    return {"entity_id": entity_id, "state": _store(project_id).latest_state(entity_id)}


@app.get("/api/v1/projects/{project_id}/entities/{entity_id}/chapters/{chapter_order}/state")
async def state_at_chapter(project_id: str, entity_id: str, chapter_order: int):
    state = _store(project_id).state_at_chapter(entity_id, chapter_order)
    return {"entity_id": entity_id, "chapter_order": chapter_order, "state": state}


@app.get("/api/v1/projects/{project_id}/entities/{entity_id}/track")
async def evolution_track(
    project_id: str,
    entity_id: str,
    from_chapter: Optional[int] = None,
    to_chapter: Optional[int] = None
):
    points = _store(project_id).evolution_track(entity_id, from_chapter, to_chapter)
    return {"entity_id": entity_id, "points": [track_point_to_dto(p) for p in points]}


@app.delete("/api/v1/projects/{project_id}/entities/{entity_id}")
async def delete_entity(project_id: str, entity_id: str):
    snapshots, warnings = _store(project_id).delete_entity(entity_id)
    return {"entity_id": entity_id, "snapshots_removed": snapshots, "warnings_removed": warnings}


@app.get("/api/v1/projects/{project_id}/snapshots/{snapshot_id}")
async def get_snapshot(project_id: str, snapshot_id: str, materialize: bool = False):
    store = _store(project_id)
    dto = snapshot_to_dto(store.get_snapshot(snapshot_id))
    if materialize:
        dto["state"] = store.materialize(snapshot_id)
    return dto


@app.get("/api/v1/projects/{project_id}/compare")
async def compare(project_id: str, from_id: str, to_id: str):
    """Field changes from one snapshot's state to another's, sorted by path."""
    changes = _store(project_id).compare(from_id, to_id)
    return {"from_id": from_id, "to_id": to_id, "changes": changes_to_dto(changes)}


# -- warnings ----------------------------------------------------------------

@app.get("/api/v1/projects/{project_id}/warnings/count")
async def warning_counts(project_id: str):
    return counts_to_dto(_store(project_id).warning_counts())


@app.get("/api/v1/projects/{project_id}/warnings")
async def list_warnings(
    project_id: str,
    severity: Optional[str] = None,
    entity_type: Optional[str] = None,
    warning_type: Optional[str] = None
):
    """PENDING warnings, ERROR first."""
    warnings = _store(project_id).list_warnings(
        severity=_parse_severity(severity),
        entity_type=EntityType.parse(entity_type) if entity_type else None,
        warning_type=WarningType.parse(warning_type) if warning_type else None,
    )
    return {"warnings": [warning_to_dto(w) for w in warnings]}


@app.post("/api/v1/projects/{project_id}/warnings", status_code=201)
async def add_warning(project_id: str, body: WarningIn):
    warning = _store(project_id).add_warning(draft_from_body(project_id, body))
    return warning_to_dto(warning)


@app.post("/api/v1/projects/{project_id}/warnings/bulk-resolve")
async def bulk_resolve(project_id: str, body: BulkIn):
    count = _store(project_id).bulk_resolve(body.ids, body.resolution)
    return {"transitioned": count}


@app.post("/api/v1/projects/{project_id}/warnings/bulk-dismiss")
async def bulk_dismiss(project_id: str, body: BulkIn):
    count = _store(project_id).bulk_dismiss(body.ids)
    return {"transitioned": count}


@app.get("/api/v1/projects/{project_id}/warnings/{warning_id}")
async def get_warning(project_id: str, warning_id: str):
    return warning_to_dto(_store(project_id).get_warning(warning_id))


@app.post("/api/v1/projects/{project_id}/warnings/{warning_id}/resolve")
async def resolve_warning(project_id: str, warning_id: str, body: Optional[ResolveIn] = None):
    note = body.resolution if body else None
    return warning_to_dto(_store(project_id).resolve_warning(warning_id, note))


@app.post("/api/v1/projects/{project_id}/warnings/{warning_id}/dismiss")
async def dismiss_warning(project_id: str, warning_id: str):
    return warning_to_dto(_store(project_id).dismiss_warning(warning_id))


# -- project -----------------------------------------------------------------

@app.delete("/api/v1/projects/{project_id}")
async def delete_project(project_id: str):
    removed = _engine().delete_project(project_id)
    return {"project_id": project_id, "snapshots_removed": removed}
