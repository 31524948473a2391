from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Any, Dict, List, Optional

from fastapi import Depends, FastAPI, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from pydantic import BaseModel, ConfigDict, Field

from greencaddie_core import (
    BackupFormatError,
    Conflict,
    Course,
    LocalRepository,
    Round,
    StorageError,
    SyncCoordinator,
    Synced,
    backup_filename,
)
from greencaddie_core.coordinator import CoordinatorState, SyncOutcome

logger = logging.getLogger(__name__)


def build_coordinator() -> SyncCoordinator:
    return SyncCoordinator(LocalRepository())


@asynccontextmanager
async def lifespan(app: FastAPI):
    factory = getattr(app.state, "coordinator_factory", None) or build_coordinator
    coordinator = factory()
    coordinator.init()
    app.state.coordinator = coordinator
    try:
        yield
    finally:
        coordinator.close()


app = FastAPI(title="GreenCaddie Local API", version="0.2.0", lifespan=lifespan)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def coordinator(request: Request) -> SyncCoordinator:
    return request.app.state.coordinator


class TeeOptionModel(BaseModel):
    id: str
    name: str
    course_rating: Optional[float] = Field(default=None, alias="courseRating")
    slope_rating: Optional[float] = Field(default=None, alias="slopeRating")

    model_config = ConfigDict(populate_by_name=True)


class CoursePayload(BaseModel):
    name: str = Field(min_length=1)
    club_name: Optional[str] = Field(default=None, alias="clubName")
    location_name: Optional[str] = Field(default=None, alias="locationName")
    holes: List[Dict[str, Any]] = Field(default_factory=list)
    draft_holes: Optional[List[Dict[str, Any]]] = Field(default=None, alias="draftHoles")
    tees: List[TeeOptionModel] = Field(default_factory=list)
    publish_status: str = Field(default="published", alias="publishStatus", pattern="^(draft|published)$")
    published_at: Optional[str] = Field(default=None, alias="publishedAt")
    qa_report: Optional[Dict[str, Any]] = Field(default=None, alias="qaReport")
    created_at: Optional[str] = Field(default=None, alias="createdAt")

    model_config = ConfigDict(populate_by_name=True)


class HoleScoreModel(BaseModel):
    hole_number: int = Field(alias="holeNumber", ge=1)
    strokes: int = Field(ge=0)
    putts: Optional[int] = Field(default=None, ge=0)
    penalties: Optional[int] = Field(default=None, ge=0)
    gir: Optional[bool] = None
    fir: Optional[bool] = None

    model_config = ConfigDict(populate_by_name=True)


class RoundPayload(BaseModel):
    course_id: str = Field(alias="courseId", min_length=1)
    tee_id: Optional[str] = Field(default=None, alias="teeId")
    handicap_at_start: Optional[float] = Field(default=None, alias="handicapAtStart")
    current_hole_number: Optional[int] = Field(default=None, alias="currentHoleNumber")
    started_at: str = Field(alias="startedAt", min_length=1)
    completed_at: Optional[str] = Field(default=None, alias="completedAt")
    scores: List[HoleScoreModel] = Field(default_factory=list)
    stableford_enabled: bool = Field(default=False, alias="stablefordEnabled")

    model_config = ConfigDict(populate_by_name=True)


class ActiveRoundPayload(BaseModel):
    round_id: Optional[str] = Field(default=None, alias="roundId")

    model_config = ConfigDict(populate_by_name=True)


class SettingsPayload(BaseModel):
    distance_unit: Optional[str] = Field(default=None, alias="distanceUnit", pattern="^(yards|meters)$")
    tile_source_id: Optional[str] = Field(default=None, alias="tileSourceId", min_length=1)

    model_config = ConfigDict(populate_by_name=True)


class ProfilePayload(BaseModel):
    display_name: Optional[str] = Field(default=None, alias="displayName")
    role: Optional[str] = Field(default=None, pattern="^(member|visitor)$")
    handicap_index: Optional[str] = Field(default=None, alias="handicapIndex")
    home_course: Optional[str] = Field(default=None, alias="homeCourse")
    onboarding_completed_at: Optional[str] = Field(default=None, alias="onboardingCompletedAt")

    model_config = ConfigDict(populate_by_name=True)


class SessionPayload(BaseModel):
    uid: str = Field(min_length=1)
    email: str = ""
    id_token: str = Field(default="", alias="idToken")

    model_config = ConfigDict(populate_by_name=True)


class SyncOutcomeResponse(BaseModel):
    status: str
    message: str
    forked_id: Optional[str] = Field(default=None, alias="forkedId")

    model_config = ConfigDict(populate_by_name=True)


def _outcome(outcome: SyncOutcome) -> Dict[str, Any]:
    if isinstance(outcome, Synced):
        body = SyncOutcomeResponse(status="synced", message=outcome.message)
    elif isinstance(outcome, Conflict):
        body = SyncOutcomeResponse(status="conflict", message=outcome.message, forked_id=outcome.forked_id)
    else:
        body = SyncOutcomeResponse(status="local_only", message=outcome.reason)
    return body.model_dump(by_alias=True, exclude_none=True)


def _state(state: CoordinatorState) -> Dict[str, Any]:
    return {
        "loading": state.loading,
        "courses": [course.to_dict() for course in state.courses],
        "rounds": [round_.to_dict() for round_ in state.rounds],
        "activeRound": state.active_round.to_dict() if state.active_round else None,
        "unit": state.unit,
        "tileSourceId": state.tile_source_id,
        "profile": state.profile.to_dict() if state.profile else None,
        "leaderboard": [entry.to_dict() for entry in state.leaderboard],
        "authUid": state.auth_uid,
        "syncState": state.sync_state.value,
        "syncMessage": state.sync_message,
    }


def _to_record(payload: BaseModel, **extra: Any) -> Dict[str, Any]:
    data = payload.model_dump(by_alias=True, exclude_none=True)
    data.update(extra)
    return data


@app.exception_handler(StorageError)
def storage_error_handler(request: Request, exc: StorageError):
    logger.error("Local storage failure while handling %s", request.url.path, exc_info=exc)
    return JSONResponse(status_code=500, content={"detail": str(exc)})


@app.get("/health")
def health() -> dict[str, str]:
    return {"status": "ok"}


@app.get("/state")
def get_state(sync: SyncCoordinator = Depends(coordinator)):
    return _state(sync.refresh())


@app.put("/courses/{course_id}")
def put_course(course_id: str, payload: CoursePayload, sync: SyncCoordinator = Depends(coordinator)):
    course = Course.from_dict(_to_record(payload, id=course_id))
    return _outcome(sync.save_course(course))


@app.delete("/courses/{course_id}")
def delete_course(course_id: str, sync: SyncCoordinator = Depends(coordinator)):
    if sync.repository.courses.get_by_id(course_id) is None:
        raise HTTPException(status_code=404, detail="Course not found")
    return _outcome(sync.delete_course(course_id))


@app.put("/rounds/{round_id}")
def put_round(
    round_id: str,
    payload: RoundPayload,
    set_active: bool = Query(default=True, alias="setActive"),
    sync: SyncCoordinator = Depends(coordinator),
):
    round_ = Round.from_dict(_to_record(payload, id=round_id))
    return _outcome(sync.save_round(round_, set_active=set_active))


@app.delete("/rounds/{round_id}")
def delete_round(round_id: str, sync: SyncCoordinator = Depends(coordinator)):
    if sync.repository.rounds.get_by_id(round_id) is None:
        raise HTTPException(status_code=404, detail="Round not found")
    return _outcome(sync.delete_round(round_id))


@app.post("/rounds/{round_id}/complete")
def complete_round(round_id: str, sync: SyncCoordinator = Depends(coordinator)):
    round_ = sync.repository.rounds.get_by_id(round_id)
    if round_ is None:
        raise HTTPException(status_code=404, detail="Round not found")
    return _outcome(sync.complete_round(round_))


@app.put("/active-round")
def put_active_round(payload: ActiveRoundPayload, sync: SyncCoordinator = Depends(coordinator)):
    return _outcome(sync.set_active_round_id(payload.round_id))


@app.put("/settings")
def put_settings(payload: SettingsPayload, sync: SyncCoordinator = Depends(coordinator)):
    if payload.distance_unit is None and payload.tile_source_id is None:
        raise HTTPException(status_code=400, detail="Nothing to update")
    if payload.distance_unit is not None:
        outcome = sync.set_unit(payload.distance_unit)
        if payload.tile_source_id is None:
            return _outcome(outcome)
    return _outcome(sync.set_tile_source(payload.tile_source_id))


@app.put("/profile")
def put_profile(payload: ProfilePayload, sync: SyncCoordinator = Depends(coordinator)):
    patch = payload.model_dump(exclude_none=True)
    return _outcome(sync.save_profile(**patch))


@app.post("/session")
def sign_in(payload: SessionPayload, sync: SyncCoordinator = Depends(coordinator)):
    return _outcome(sync.set_auth_session(payload.uid, payload.email, payload.id_token))


@app.delete("/session")
def sign_out(sync: SyncCoordinator = Depends(coordinator)):
    return _outcome(sync.set_auth_session(None))


@app.get("/leaderboard")
def leaderboard(
    timeframe: str = Query(default="week", pattern="^(week|month|all)$"),
    course_id: str = Query(default="all", alias="courseId"),
    role: str = Query(default="combined", pattern="^(combined|members|visitors)$"),
    sync: SyncCoordinator = Depends(coordinator),
):
    entries = sync.refresh_leaderboard(timeframe, course_id, role)
    return {"entries": [entry.to_dict() for entry in entries]}


@app.get("/backup")
def export_backup(sync: SyncCoordinator = Depends(coordinator)):
    payload = sync.export_backup()
    return Response(
        content=payload.to_json(),
        media_type="application/json",
        headers={"Content-Disposition": f'attachment; filename="{backup_filename()}"'},
    )


async def backup_text(request: Request) -> str:
    try:
        return (await request.body()).decode("utf-8")
    except UnicodeDecodeError as exc:
        raise HTTPException(status_code=400, detail="Backup file is not valid JSON.") from exc


@app.post("/backup/preview")
def preview_backup(text: str = Depends(backup_text), sync: SyncCoordinator = Depends(coordinator)):
    try:
        parsed = sync.preview_backup(text)
    except BackupFormatError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return {"preview": parsed.preview.to_dict(), "warnings": parsed.warnings}


@app.post("/backup/import")
def import_backup(
    mode: str = Query(default="merge", pattern="^(merge|replace)$"),
    text: str = Depends(backup_text),
    sync: SyncCoordinator = Depends(coordinator),
):
    try:
        parsed = sync.preview_backup(text)
    except BackupFormatError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    outcome = sync.import_backup(parsed, mode=mode)
    body = _outcome(outcome)
    body["preview"] = parsed.preview.to_dict()
    body["warnings"] = parsed.warnings
    return body
