"""
Admin API routes.

All endpoints are prefixed with /admin.
"""

from typing import Any, Dict, List, Optional

import structlog
from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from .config import Settings, get_settings
from .db.base import get_db
from .db.services import BuildLedger, PreflightRunService, ProfileService
from .errors import (
    BuildFailedError,
    ConflictError,
    NotFoundError,
    PersistenceError,
    PublisherError,
    ValidationError,
)
from .pipeline.publisher import ArtifactPublisher
from .schemas import (
    PreflightRunCreate,
    ProfileCreate,
    ProfileRebuildRequest,
    ServerCreate,
)
from .storage import ObjectStore, create_object_store

logger = structlog.get_logger()

router = APIRouter(prefix="/admin", tags=["admin"])

_object_store: Optional[ObjectStore] = None


def get_object_store(settings: Settings = Depends(get_settings)) -> ObjectStore:
    """Dependency returning the process-wide object store."""
    global _object_store
    if _object_store is None:
        _object_store = create_object_store(settings.storage_uri)
    return _object_store


def to_http_error(error: PublisherError) -> HTTPException:
    """Map a pipeline error to an HTTP error with the error body as detail."""
    if isinstance(error, NotFoundError):
        status_code = 404
    elif isinstance(error, ConflictError):
        status_code = 409
    elif isinstance(error, ValidationError):
        status_code = 400
    elif isinstance(error, PersistenceError):
        status_code = 503
    else:
        status_code = 500
    return HTTPException(status_code=status_code, detail=error.to_dict())


def _ledger(db: Session, settings: Settings) -> BuildLedger:
    return BuildLedger(
        db,
        history_max=settings.build_history_max,
        stale_after_seconds=settings.stale_build_seconds,
        error_message_max_length=settings.error_message_max_length,
    )


# =============================================================================
# Profile Endpoints
# =============================================================================


@router.post("/profiles", status_code=201)
def create_profile(
    profile: ProfileCreate,
    db: Session = Depends(get_db),
) -> Dict[str, Any]:
    """Create a new profile."""
    try:
        created = ProfileService(db).create_profile(**profile.model_dump())
    except PublisherError as e:
        raise to_http_error(e)
    return created.to_dict()


@router.get("/profiles/{profile_id}")
def get_profile(profile_id: str, db: Session = Depends(get_db)) -> Dict[str, Any]:
    """Get a profile by ID."""
    service = ProfileService(db)
    try:
        profile = service.require_profile(profile_id)
    except PublisherError as e:
        raise to_http_error(e)
    data = profile.to_dict()
    data["servers"] = [server.to_dict() for server in service.list_servers(profile_id)]
    return data


@router.post("/profiles/{profile_id}/servers", status_code=201)
def add_server(
    profile_id: str,
    server: ServerCreate,
    db: Session = Depends(get_db),
) -> Dict[str, Any]:
    """Attach a server to a profile."""
    try:
        created = ProfileService(db).add_server(profile_id, **server.model_dump())
    except PublisherError as e:
        raise to_http_error(e)
    return created.to_dict()


# =============================================================================
# Build Endpoints
# =============================================================================


@router.post("/profiles/{profile_id}/rebuild")
def rebuild_profile(
    profile_id: str,
    request: Optional[ProfileRebuildRequest] = None,
    db: Session = Depends(get_db),
    store: ObjectStore = Depends(get_object_store),
    settings: Settings = Depends(get_settings),
) -> Dict[str, Any]:
    """Rebuild a profile and publish its manifest.

    Blocks until the build is completed or failed.
    """
    publisher = ArtifactPublisher(db, store, settings)
    try:
        build = publisher.rebuild_profile(profile_id, request or ProfileRebuildRequest())
    except BuildFailedError as e:
        logger.warning("rebuild_failed", profile_id=profile_id, build_id=e.build_id)
        raise to_http_error(e)
    except PublisherError as e:
        raise to_http_error(e)
    return build.to_dict()


@router.get("/profiles/{profile_id}/builds")
def list_builds(
    profile_id: str,
    limit: int = Query(20, ge=1, le=200),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
) -> List[Dict[str, Any]]:
    """List a profile's builds, newest first."""
    try:
        ProfileService(db).require_profile(profile_id)
    except PublisherError as e:
        raise to_http_error(e)
    builds = _ledger(db, settings).list_builds(profile_id, limit=limit, offset=offset)
    return [build.to_dict() for build in builds]


@router.get("/profiles/{profile_id}/builds/latest")
def get_latest_build(
    profile_id: str,
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
) -> Dict[str, Any]:
    """Get the profile's latest pointer and its newest completed build."""
    ledger = _ledger(db, settings)
    try:
        pointer = ledger.get_latest_pointer(profile_id)
    except PublisherError as e:
        raise to_http_error(e)
    latest = ledger.get_latest_build(profile_id)
    return {
        "pointer": pointer,
        "build": latest.to_dict() if latest else None,
    }


@router.get("/builds/{build_id}")
def get_build(
    build_id: str,
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
) -> Dict[str, Any]:
    """Get a build by ID."""
    try:
        build = _ledger(db, settings).require_build(build_id)
    except PublisherError as e:
        raise to_http_error(e)
    return build.to_dict()


# =============================================================================
# Setup Wizard Preflight Runs
# =============================================================================


@router.get("/wizard/preflight-runs")
def list_preflight_runs(
    limit: int = 8,
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
) -> Dict[str, Any]:
    """List stored preflight runs, newest first. ``limit`` is clamped to 1..50."""
    service = PreflightRunService(db, max_stored_runs=settings.preflight_history_max)
    return {"runs": service.list_runs(limit)}


@router.post("/wizard/preflight-runs", status_code=201)
def create_preflight_run(
    payload: PreflightRunCreate,
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
) -> Dict[str, Any]:
    """Store a preflight run."""
    service = PreflightRunService(db, max_stored_runs=settings.preflight_history_max)
    try:
        return service.create_run(payload.checks)
    except PublisherError as e:
        raise to_http_error(e)


@router.delete("/wizard/preflight-runs")
def clear_preflight_runs(
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
) -> Dict[str, Any]:
    """Delete all stored preflight runs."""
    service = PreflightRunService(db, max_stored_runs=settings.preflight_history_max)
    try:
        deleted = service.clear()
    except PublisherError as e:
        raise to_http_error(e)
    return {"deleted": deleted}
