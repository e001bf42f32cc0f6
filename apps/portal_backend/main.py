from __future__ import annotations

import os
from datetime import datetime, timedelta
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, List, Optional

from fastapi import Body, Depends, FastAPI, Header, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from acopilot import get_version
from acopilot.core.dspy_runtime import llm_disabled
from acopilot.core.errors import ActivityError, ErrorKind
from acopilot.core.models import Activity, ActivityOptions, RecentActivity, Story, StudentProfile, SuggestionRound
from acopilot.pipeline.bootstrap import bootstrap_service, build_service
from apps.suggestions.service import ActivitySuggestionService
from apps.suggestions.session import SessionRegistry, SuggestionSession

REPO_ROOT = Path(__file__).resolve().parents[2]

STATUS_BY_KIND: Dict[ErrorKind, int] = {
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.MISSING_PRECONDITION: 409,
    ErrorKind.INVALID_TRANSITION: 409,
    ErrorKind.EMPTY_SKILL_SET: 422,
    ErrorKind.INVALID_CATEGORY: 422,
    ErrorKind.GENERATOR_UNAVAILABLE: 503,
}


class PortalSettings(BaseModel):
    """Runtime configuration for the portal backend."""

    repo_root: Path = Field(default=REPO_ROOT)
    config_path: Path | None = None
    store_path: Path | None = None
    offline: bool = False
    max_sessions: int = Field(default=1000, ge=1)
    session_idle_minutes: int = Field(default=120, ge=1)


@lru_cache
def get_settings() -> PortalSettings:
    config_path = os.getenv("PORTAL_CONFIG")
    store_path = os.getenv("PORTAL_STORE")
    repo_root = os.getenv("ACOPILOT_REPO_ROOT")
    limits: Dict[str, Any] = {}
    if os.getenv("PORTAL_MAX_SESSIONS"):
        limits["max_sessions"] = int(os.environ["PORTAL_MAX_SESSIONS"])
    if os.getenv("PORTAL_SESSION_IDLE_MINUTES"):
        limits["session_idle_minutes"] = int(os.environ["PORTAL_SESSION_IDLE_MINUTES"])
    return PortalSettings(
        repo_root=Path(repo_root).expanduser().resolve() if repo_root else REPO_ROOT,
        config_path=Path(config_path).expanduser().resolve() if config_path else None,
        store_path=Path(store_path).expanduser().resolve() if store_path else None,
        offline=llm_disabled(),
        **limits,
    )


@lru_cache(maxsize=8)
def _service_for(repo_root: Path, config_path: Path | None, store_path: Path | None, offline: bool) -> ActivitySuggestionService:
    ctx = bootstrap_service(config_path, repo_root=repo_root, store_path_override=store_path, offline=offline)
    return build_service(ctx)


def get_service(settings: PortalSettings = Depends(get_settings)) -> ActivitySuggestionService:
    return _service_for(settings.repo_root, settings.config_path, settings.store_path, settings.offline)


@lru_cache
def get_registry() -> SessionRegistry:
    settings = get_settings()
    return SessionRegistry(
        max_sessions=settings.max_sessions,
        idle_ttl=timedelta(minutes=settings.session_idle_minutes),
    )


class HealthResponse(BaseModel):
    status: str
    offline: bool
    open_sessions: int


class SessionResponse(BaseModel):
    session_id: str
    student_id: str
    created_at: datetime
    rounds: int
    exclusions: List[str] = Field(default_factory=list)
    pending: List[Activity] = Field(default_factory=list)


class PastActivityRequest(BaseModel):
    name: str = Field(..., min_length=1)
    result: str | None = None
    difficulty_level: str | None = None
    date: datetime | None = None
    notes: str | None = None


class StoryRequest(BaseModel):
    context: str = Field(..., min_length=1, description="What happened; the story is built around it.")
    student_id: str | None = None
    exclude_titles: List[str] = Field(default_factory=list)


app = FastAPI(title="Activity Copilot API", version=get_version())
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(ActivityError)
async def activity_error_handler(_: Any, exc: ActivityError) -> JSONResponse:
    status = STATUS_BY_KIND.get(exc.kind, 400)
    return JSONResponse(status_code=status, content={"detail": exc.message, "kind": exc.kind.value})


@app.exception_handler(HTTPException)
async def http_error_handler(_: Any, exc: HTTPException) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail})


@app.get("/health", response_model=HealthResponse)
def health(
    settings: PortalSettings = Depends(get_settings),
    registry: SessionRegistry = Depends(get_registry),
) -> HealthResponse:
    return HealthResponse(status="ok", offline=settings.offline, open_sessions=len(registry))


# ----------------------------------------------------------------------
# Students


@app.post("/students", response_model=StudentProfile, status_code=201)
def create_student(
    profile: StudentProfile,
    owner_id: Optional[str] = Header(None, alias="X-Owner-Id"),
    service: ActivitySuggestionService = Depends(get_service),
) -> StudentProfile:
    if owner_id:
        profile = profile.model_copy(update={"owner_id": owner_id})
    return service.create_student(profile)


@app.get("/students", response_model=List[Dict[str, Any]])
def list_students(
    owner_id: Optional[str] = Header(None, alias="X-Owner-Id"),
    service: ActivitySuggestionService = Depends(get_service),
) -> List[Dict[str, Any]]:
    return service.list_students(owner_id=owner_id)


@app.get("/students/{student_id}", response_model=StudentProfile)
def get_student(
    student_id: str,
    owner_id: Optional[str] = Header(None, alias="X-Owner-Id"),
    service: ActivitySuggestionService = Depends(get_service),
) -> StudentProfile:
    return service.get_student(student_id, owner_id=owner_id)


@app.put("/students/{student_id}/recent-activity", response_model=StudentProfile)
def update_recent_activity(
    student_id: str,
    recent: RecentActivity,
    owner_id: Optional[str] = Header(None, alias="X-Owner-Id"),
    service: ActivitySuggestionService = Depends(get_service),
) -> StudentProfile:
    return service.update_recent_activity(student_id, recent, owner_id=owner_id)


# ----------------------------------------------------------------------
# Stories (registered before the generic collection routes below)


@app.post("/stories", response_model=Story)
def request_story(
    request: StoryRequest,
    owner_id: Optional[str] = Header(None, alias="X-Owner-Id"),
    service: ActivitySuggestionService = Depends(get_service),
) -> Story:
    return service.request_story(
        request.context,
        student_id=request.student_id,
        owner_id=owner_id,
        exclude_titles=request.exclude_titles,
    )


@app.get("/students/{student_id}/stories", response_model=List[Story])
def list_stories(
    student_id: str,
    owner_id: Optional[str] = Header(None, alias="X-Owner-Id"),
    service: ActivitySuggestionService = Depends(get_service),
) -> List[Story]:
    return service.list_stories(student_id, owner_id=owner_id)


@app.post("/students/{student_id}/stories", response_model=Story, status_code=201)
def save_story(
    student_id: str,
    story: Story,
    owner_id: Optional[str] = Header(None, alias="X-Owner-Id"),
    service: ActivitySuggestionService = Depends(get_service),
) -> Story:
    return service.save_story(student_id, story, owner_id=owner_id)


@app.delete("/students/{student_id}/stories/{story_id}", status_code=204)
def remove_story(
    student_id: str,
    story_id: str,
    owner_id: Optional[str] = Header(None, alias="X-Owner-Id"),
    service: ActivitySuggestionService = Depends(get_service),
) -> None:
    service.remove_story(student_id, story_id, owner_id=owner_id)


# ----------------------------------------------------------------------
# Activity collections


@app.get("/students/{student_id}/{collection}", response_model=List[Activity])
def list_collection(
    student_id: str,
    collection: str,
    owner_id: Optional[str] = Header(None, alias="X-Owner-Id"),
    service: ActivitySuggestionService = Depends(get_service),
) -> List[Activity]:
    return service.list_activities(student_id, collection, owner_id=owner_id)


@app.post("/students/{student_id}/discarded/{activity_id}/restore", response_model=Activity)
def restore_discarded(
    student_id: str,
    activity_id: str,
    owner_id: Optional[str] = Header(None, alias="X-Owner-Id"),
    service: ActivitySuggestionService = Depends(get_service),
) -> Activity:
    return service.restore_discarded(student_id, activity_id, owner_id=owner_id)


@app.delete("/students/{student_id}/{collection}/{activity_id}", status_code=204)
def remove_activity(
    student_id: str,
    collection: str,
    activity_id: str,
    owner_id: Optional[str] = Header(None, alias="X-Owner-Id"),
    service: ActivitySuggestionService = Depends(get_service),
) -> None:
    service.remove_activity(student_id, activity_id, collection, owner_id=owner_id)


@app.post("/students/{student_id}/history", response_model=Activity, status_code=201)
def log_past_activity(
    student_id: str,
    request: PastActivityRequest,
    owner_id: Optional[str] = Header(None, alias="X-Owner-Id"),
    service: ActivitySuggestionService = Depends(get_service),
) -> Activity:
    return service.log_past_activity(
        student_id,
        name=request.name,
        result=request.result,
        difficulty_level=request.difficulty_level,
        date=request.date,
        notes=request.notes,
        owner_id=owner_id,
    )


# ----------------------------------------------------------------------
# Sessions


@app.post("/students/{student_id}/sessions", response_model=SessionResponse, status_code=201)
def open_session(
    student_id: str,
    owner_id: Optional[str] = Header(None, alias="X-Owner-Id"),
    service: ActivitySuggestionService = Depends(get_service),
    registry: SessionRegistry = Depends(get_registry),
) -> SessionResponse:
    session = registry.add(service.open_session(student_id, owner_id=owner_id))
    return _session_response(session)


@app.get("/sessions/{session_id}", response_model=SessionResponse)
def get_session(
    session_id: str,
    owner_id: Optional[str] = Header(None, alias="X-Owner-Id"),
    service: ActivitySuggestionService = Depends(get_service),
    registry: SessionRegistry = Depends(get_registry),
) -> SessionResponse:
    return _session_response(_owned_session(session_id, owner_id, service, registry))


@app.delete("/sessions/{session_id}", status_code=204)
def close_session(
    session_id: str,
    owner_id: Optional[str] = Header(None, alias="X-Owner-Id"),
    service: ActivitySuggestionService = Depends(get_service),
    registry: SessionRegistry = Depends(get_registry),
) -> None:
    _owned_session(session_id, owner_id, service, registry)
    registry.close(session_id)


@app.post("/sessions/{session_id}/suggestions", response_model=SuggestionRound)
def request_suggestions(
    session_id: str,
    options: Optional[ActivityOptions] = Body(None),
    owner_id: Optional[str] = Header(None, alias="X-Owner-Id"),
    service: ActivitySuggestionService = Depends(get_service),
    registry: SessionRegistry = Depends(get_registry),
) -> SuggestionRound:
    return service.request_suggestions(registry.get(session_id), options=options, owner_id=owner_id)


@app.post("/sessions/{session_id}/home-activity", response_model=SuggestionRound)
def request_home_activity(
    session_id: str,
    options: Optional[ActivityOptions] = Body(None),
    owner_id: Optional[str] = Header(None, alias="X-Owner-Id"),
    service: ActivitySuggestionService = Depends(get_service),
    registry: SessionRegistry = Depends(get_registry),
) -> SuggestionRound:
    return service.request_home_activity(registry.get(session_id), options, owner_id=owner_id)


@app.post("/sessions/{session_id}/activities/{activity_id}/save", response_model=Activity)
def save_activity(
    session_id: str,
    activity_id: str,
    owner_id: Optional[str] = Header(None, alias="X-Owner-Id"),
    service: ActivitySuggestionService = Depends(get_service),
    registry: SessionRegistry = Depends(get_registry),
) -> Activity:
    return service.save_activity(registry.get(session_id), activity_id, owner_id=owner_id)


@app.post("/sessions/{session_id}/activities/{activity_id}/discard", response_model=Activity)
def discard_activity(
    session_id: str,
    activity_id: str,
    owner_id: Optional[str] = Header(None, alias="X-Owner-Id"),
    service: ActivitySuggestionService = Depends(get_service),
    registry: SessionRegistry = Depends(get_registry),
) -> Activity:
    return service.discard_activity(registry.get(session_id), activity_id, owner_id=owner_id)


def _owned_session(
    session_id: str,
    owner_id: Optional[str],
    service: ActivitySuggestionService,
    registry: SessionRegistry,
) -> SuggestionSession:
    """Look up a live session; another owner's session reads as missing."""

    session = registry.get(session_id)
    service.require_student(session.student_id, owner_id)
    return session


def _session_response(session: SuggestionSession) -> SessionResponse:
    return SessionResponse(
        session_id=session.session_id,
        student_id=session.student_id,
        created_at=session.created_at,
        rounds=session.rounds,
        exclusions=sorted(session.exclusions),
        pending=list(session.suggested.values()),
    )
