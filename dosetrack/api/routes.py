"""
FastAPI API routes for dosetrack.
"""

import json
import logging
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Optional

from fastapi import (
    APIRouter,
    Body,
    Depends,
    Header,
    HTTPException,
    Query,
    WebSocket,
    WebSocketDisconnect,
)
from fastapi.encoders import jsonable_encoder
from pydantic import Field, ValidationError

from dosetrack.config import API_KEY, DB_PATH, PHASE_TICK_INTERVAL_SEC, TIMEZONE
from dosetrack.core import catalog
from dosetrack.core.database import SubstanceRepository
from dosetrack.core.models import CamelModel
from dosetrack.core.phase_engine import PhaseTicker
from dosetrack.core.timing_profiles import (
    DEFAULT_REGISTRY,
    PHASE_INFO,
    get_profile,
    safety_recommendations,
)
from dosetrack.core.tracker import (
    DoseNotFound,
    DoseTracker,
    SubstanceNotFound,
    UnsafeDoseError,
)

log = logging.getLogger("dosetrack.api")

router = APIRouter(prefix="/api")

_tracker: Optional[DoseTracker] = None


def get_tracker() -> DoseTracker:
    global _tracker
    if _tracker is None:
        _tracker = DoseTracker(SubstanceRepository(DB_PATH))
    return _tracker


# --- Auth ---

def verify_api_key(x_api_key: str = Header(default="")):
    if API_KEY and x_api_key != API_KEY:
        raise HTTPException(status_code=401, detail="Invalid API key")


# --- Models ---

class SubstanceCreateRequest(CamelModel):
    name: str = Field(..., min_length=1)
    category: Optional[str] = None
    description: Optional[str] = None
    instructions: Optional[str] = None
    warnings: Optional[str] = None
    settings: Optional[dict] = None


class SettingsUpdateRequest(CamelModel):
    default_dosage: Optional[Any] = None
    min_time_between_doses_hours: Optional[float] = Field(None, gt=0)
    # older clients
    min_time_between_doses: Optional[float] = Field(None, gt=0)
    waiting_period: Optional[float] = Field(None, gt=0)
    max_daily_doses: Optional[int] = Field(None, ge=0)
    use_recommended_timing: Optional[bool] = None
    current_supply: Optional[float] = Field(None, ge=0)
    features: Optional[dict[str, bool]] = None


class DoseRequest(CamelModel):
    timestamp: Optional[str] = None
    dosage: Optional[Any] = None
    override: bool = False
    override_reason: Optional[str] = None
    notes: str = ""


class DoseEditRequest(CamelModel):
    timestamp: Optional[str] = None
    dosage: Optional[Any] = None
    notes: Optional[str] = None
    override_reason: Optional[str] = None


@contextmanager
def _http_errors():
    """Map tracker and validation errors onto HTTP status codes."""
    try:
        yield
    except (SubstanceNotFound, DoseNotFound) as e:
        raise HTTPException(status_code=404, detail=str(e))
    except UnsafeDoseError as e:
        raise HTTPException(status_code=409, detail={
            "message": str(e),
            "verdict": e.verdict.model_dump(mode="json", by_alias=True),
        })
    except ValidationError as e:
        raise HTTPException(status_code=422, detail=json.loads(e.json(include_url=False)))
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))


# --- Reference data ---

@router.get("/status")
def status():
    """Health check endpoint."""
    return {
        "service": "dosetrack",
        "status": "ok",
        "version": "1.0.0",
        "timestamp": datetime.now().isoformat(),
        "timezone": TIMEZONE,
        "profiles": len(DEFAULT_REGISTRY.substance_keys()) + len(DEFAULT_REGISTRY.category_keys()),
    }


@router.get("/profiles", dependencies=[Depends(verify_api_key)])
def list_profiles():
    """All timing profiles: per substance, per category and the default."""
    return DEFAULT_REGISTRY.list_profiles()


@router.get("/profiles/{name}", dependencies=[Depends(verify_api_key)])
def get_profile_route(name: str, category: Optional[str] = None):
    """Resolve a profile by substance name, then category, then default."""
    return get_profile(name, category)


@router.get("/profiles/{name}/safety", dependencies=[Depends(verify_api_key)])
def get_profile_safety(name: str, phase: str = Query(...), category: Optional[str] = None):
    """Phase-specific safety message plus general advice and vitals to watch."""
    if phase not in PHASE_INFO:
        raise HTTPException(status_code=422, detail=f"Unknown phase: {phase}")
    return safety_recommendations(name, phase, category)


@router.get("/catalog", dependencies=[Depends(verify_api_key)])
def get_catalog(q: str = "", category: Optional[str] = None):
    """Search the substance catalog."""
    return {
        "categories": catalog.categories(),
        "entries": catalog.search(q, category),
    }


# --- Substances ---

@router.get("/substances", dependencies=[Depends(verify_api_key)])
def list_substances(tracker: DoseTracker = Depends(get_tracker)):
    return tracker.list_substances()


@router.post("/substances", status_code=201, dependencies=[Depends(verify_api_key)])
def create_substance(req: SubstanceCreateRequest, tracker: DoseTracker = Depends(get_tracker)):
    """Add a substance; catalog defaults apply when the name is known."""
    with _http_errors():
        return tracker.add_substance(
            req.name,
            category=req.category,
            description=req.description,
            instructions=req.instructions,
            warnings=req.warnings,
            settings=req.settings,
        )


@router.get("/substances/{substance_id}", dependencies=[Depends(verify_api_key)])
def get_substance(substance_id: str, tracker: DoseTracker = Depends(get_tracker)):
    with _http_errors():
        return tracker.get_substance(substance_id)


@router.delete("/substances/{substance_id}", dependencies=[Depends(verify_api_key)])
def delete_substance(substance_id: str, tracker: DoseTracker = Depends(get_tracker)):
    with _http_errors():
        tracker.delete_substance(substance_id)
    return {"deleted": substance_id, "status": "ok"}


@router.patch("/substances/{substance_id}/settings", dependencies=[Depends(verify_api_key)])
def update_settings(substance_id: str, req: SettingsUpdateRequest,
                    tracker: DoseTracker = Depends(get_tracker)):
    """Partial settings update; only the fields sent are changed."""
    with _http_errors():
        return tracker.update_settings(substance_id, req.model_dump(exclude_unset=True, by_alias=True))


# --- Evaluation ---

@router.get("/substances/{substance_id}/safety", dependencies=[Depends(verify_api_key)])
def check_safety(substance_id: str, timestamp: Optional[str] = None,
                 tracker: DoseTracker = Depends(get_tracker)):
    """Safety verdict for a dose now (or at `timestamp`). Never records anything."""
    with _http_errors():
        return tracker.check_safety(substance_id, timestamp)


@router.get("/substances/{substance_id}/next-dose", dependencies=[Depends(verify_api_key)])
def next_dose(substance_id: str, tracker: DoseTracker = Depends(get_tracker)):
    with _http_errors():
        return tracker.next_dose_time(substance_id)


@router.get("/substances/{substance_id}/phase", dependencies=[Depends(verify_api_key)])
def get_phase(substance_id: str, now: Optional[str] = None,
              tracker: DoseTracker = Depends(get_tracker)):
    with _http_errors():
        return tracker.phase(substance_id, now)


@router.get("/substances/{substance_id}/interactions", dependencies=[Depends(verify_api_key)])
def get_interactions(substance_id: str, tracker: DoseTracker = Depends(get_tracker)):
    """Category-level interaction risk against every other tracked substance."""
    with _http_errors():
        return tracker.interactions(substance_id)


@router.get("/substances/{substance_id}/stats", dependencies=[Depends(verify_api_key)])
def get_stats(substance_id: str, tracker: DoseTracker = Depends(get_tracker)):
    with _http_errors():
        return tracker.stats(substance_id)


@router.get("/overview", dependencies=[Depends(verify_api_key)])
def get_overview(tracker: DoseTracker = Depends(get_tracker)):
    """Every substance with its verdict, next dose, phase and supply."""
    return tracker.overview()


# --- Doses ---

@router.post("/substances/{substance_id}/doses", status_code=201, dependencies=[Depends(verify_api_key)])
def record_dose(substance_id: str, req: DoseRequest, tracker: DoseTracker = Depends(get_tracker)):
    """
    Record a dose. An unsafe dose is refused with 409 and the verdict;
    resend with override=true and an overrideReason to record it anyway.
    """
    with _http_errors():
        return tracker.record_dose(
            substance_id,
            timestamp=req.timestamp,
            dosage=req.dosage,
            override=req.override,
            override_reason=req.override_reason,
            notes=req.notes,
        )


@router.patch("/substances/{substance_id}/doses/{dose_id}", dependencies=[Depends(verify_api_key)])
def edit_dose(substance_id: str, dose_id: str, req: DoseEditRequest,
              tracker: DoseTracker = Depends(get_tracker)):
    with _http_errors():
        return tracker.edit_dose(
            substance_id, dose_id,
            timestamp=req.timestamp,
            dosage=req.dosage,
            notes=req.notes,
            override_reason=req.override_reason,
        )


@router.delete("/substances/{substance_id}/doses/{dose_id}", dependencies=[Depends(verify_api_key)])
def delete_dose(substance_id: str, dose_id: str, tracker: DoseTracker = Depends(get_tracker)):
    with _http_errors():
        tracker.delete_dose(substance_id, dose_id)
    return {"deleted": dose_id, "status": "ok"}


# --- Import ---

@router.post("/import", dependencies=[Depends(verify_api_key)])
def import_collection(payload: Any = Body(...), tracker: DoseTracker = Depends(get_tracker)):
    """
    Replace the whole collection with an export. Accepts a bare array or
    {"drugs": [...]}; older record shapes are upgraded.
    """
    if isinstance(payload, dict) and "drugs" in payload:
        payload = payload["drugs"]
    with _http_errors():
        result = tracker.import_collection(payload)
    return {**result, "status": "ok"}


# ══════════════════════════════════════════════════════════════════════
# PHASE STREAM: one PhaseTicker per open connection
# ══════════════════════════════════════════════════════════════════════

@router.websocket("/ws/phase/{substance_id}")
async def phase_stream(websocket: WebSocket, substance_id: str,
                       x_api_key: str = Header(default=""),
                       api_key: str = Query(default=""),
                       tracker: DoseTracker = Depends(get_tracker)):
    """
    Push the current PhaseStatus immediately and then every tick.
    Sending "refresh" forces an extra update.
    """
    if API_KEY and API_KEY not in (x_api_key, api_key):
        await websocket.close(code=1008)
        return
    await websocket.accept()

    async def push():
        try:
            status = tracker.phase(substance_id)
        except SubstanceNotFound as e:
            await websocket.send_json({"error": str(e)})
            await websocket.close(code=1008)
            return
        await websocket.send_json(jsonable_encoder(status))

    try:
        tracker.get_substance(substance_id)
    except SubstanceNotFound as e:
        await websocket.send_json({"error": str(e)})
        await websocket.close(code=1008)
        return

    try:
        async with PhaseTicker(push, interval=PHASE_TICK_INTERVAL_SEC):
            while True:
                message = await websocket.receive_text()
                if message.strip().lower() == "refresh":
                    await push()
    except WebSocketDisconnect:
        log.debug("Phase stream for %s closed", substance_id)
