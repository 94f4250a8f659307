"""
api.py

REST API layer for the Maintenance Tracker.

Framework : FastAPI
Auth      : Bearer token; the token is resolved to a User UUID by the
            get_current_actor dependency.  Unknown or deactivated users are
            rejected with 401.  Every endpoint receives the resolved Actor
            and passes it to the relevant use case command.

Structure
---------
  Routers (all prefixed under /api/v1)
  ├── /me                           — the authenticated user
  ├── /users                        — user administration
  ├── /teams                        — team administration
  ├── /equipment                    — equipment register
  │   └── /{equipment_id}/scrap     — explicit scrap
  ├── /requests                     — maintenance requests
  │   ├── /{request_id}/assign      — assign a technician
  │   ├── /{request_id}/status      — move along the lifecycle
  │   ├── /{request_id}/complete    — mark repaired with hours spent
  │   ├── /{request_id}/scrap       — scrap request and equipment
  │   └── /{request_id}/logs        — status history
  └── /logs                         — audit log search

Error handling
--------------
  NotFoundError            → 404
  PermissionDenied         → 403  (401 when not authenticated)
  InvalidStatusTransition  → 409
  ConflictError            → 409
  ConcurrencyError         → 409
  ValidationError          → 422
  TeamMismatch             → 422
  EquipmentScrapped        → 422
  ValueError               → 422
  Unhandled                → 500 (FastAPI default)

Response envelope
-----------------
  Success  : { "data": <payload> }
  Error    : { "detail": "<message>", "code": "<ERROR_CODE>", "context": {...} }

Running
-------
  uvicorn api:app --reload
"""

from __future__ import annotations

import os
import uuid
from datetime import date, datetime
from typing import Any, Dict, Optional

import structlog
from fastapi import APIRouter, Depends, FastAPI, Path, Query, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from fastapi_mcp import FastApiMCP
from pydantic import BaseModel, EmailStr, Field, field_validator

from application import (
    AbstractUnitOfWork,
    EquipmentFilter,
    LogFilter,
    RequestFilter,
    # Use-case commands
    AssignRequestCommand,
    CompleteRequestCommand,
    CreateRequestCommand,
    ScrapRequestCommand,
    UpdateRequestStatusCommand,
    # Use-case classes
    AssignRequestUseCase,
    CompleteRequestUseCase,
    CreateRequestUseCase,
    ResolveActorUseCase,
    ScrapRequestUseCase,
    UpdateRequestStatusUseCase,
)
from config import settings
from infrastructure import SqlAlchemyUnitOfWork
from log_config import RequestIdMiddleware, setup_logging
from model import (
    Actor,
    DenialReason,
    DomainError,
    PermissionDenied,
    RequestStatus,
    RequestType,
    Role,
)

setup_logging()
log = structlog.get_logger(__name__)


# ---------------------------------------------------------------------------
# App bootstrap
# ---------------------------------------------------------------------------

app = FastAPI(
    title=settings.app_name,
    version="1.0.0",
    description=(
        "REST API for tracking equipment maintenance: teams, users, the "
        "equipment register, the maintenance request lifecycle and its "
        "immutable status history."
    ),
    docs_url="/docs",
    redoc_url="/redoc",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(RequestIdMiddleware)


@app.on_event("startup")
def bootstrap_database():
    """
    Create the schema when AUTO_CREATE_DB is set and make sure the first
    administrator exists, so the API can be used from a fresh database.
    """
    from application import SeedAdminCommand, SeedAdminUseCase
    from db import engine
    from orm import metadata, start_mappers

    start_mappers()
    if settings.auto_create_db:
        if engine.url.get_backend_name() == "sqlite" and engine.url.database:
            folder = os.path.dirname(engine.url.database)
            if folder:
                os.makedirs(folder, exist_ok=True)
        metadata.create_all(engine)
    if settings.bootstrap_admin_id:
        created = SeedAdminUseCase().execute(
            SeedAdminCommand(
                user_id=uuid.UUID(settings.bootstrap_admin_id),
                name=settings.bootstrap_admin_name,
                email=settings.bootstrap_admin_email,
            ),
            SqlAlchemyUnitOfWork(),
        )
        if created is not None:
            log.info("startup.admin_seeded", user_id=created.id, email=created.email)


# ---------------------------------------------------------------------------
# Global exception handlers
# ---------------------------------------------------------------------------

_STATUS_BY_CODE: Dict[str, int] = {
    "NOT_FOUND": 404,
    "VALIDATION_ERROR": 422,
    "PERMISSION_DENIED": 403,
    "INVALID_STATUS_TRANSITION": 409,
    "TEAM_MISMATCH": 422,
    "EQUIPMENT_SCRAPPED": 422,
    "CONFLICT": 409,
    "CONCURRENT_UPDATE": 409,
}


@app.exception_handler(DomainError)
async def domain_error_handler(request, exc: DomainError):
    status_code = _STATUS_BY_CODE.get(exc.code, 400)
    headers = None
    if isinstance(exc, PermissionDenied) and exc.reason is DenialReason.NOT_AUTHENTICATED:
        status_code = 401
        headers = {"WWW-Authenticate": "Bearer"}
    log.warning(
        "request.rejected",
        code=exc.code,
        status_code=status_code,
        path=request.url.path,
        **exc.context,
    )
    return JSONResponse(
        status_code=status_code,
        content={"detail": exc.message, "code": exc.code, "context": exc.context},
        headers=headers,
    )


@app.exception_handler(ValueError)
async def value_error_handler(request, exc: ValueError):
    return JSONResponse(status_code=422, content={"detail": str(exc)})


# ---------------------------------------------------------------------------
# Dependencies
# ---------------------------------------------------------------------------

bearer_scheme = HTTPBearer(auto_error=False)


def get_uow() -> AbstractUnitOfWork:
    """Returns a SQLAlchemy Unit of Work bound to the configured database."""
    return SqlAlchemyUnitOfWork()


def get_current_actor(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    uow: AbstractUnitOfWork = Depends(get_uow),
) -> Actor:
    """
    The Bearer token is the raw user UUID (e.g. "Bearer 550e8400-...").
    Replace with real token verification before exposing the service.
    """
    if credentials is None:
        raise PermissionDenied("authenticate", DenialReason.NOT_AUTHENTICATED)
    try:
        user_id = uuid.UUID(credentials.credentials)
    except ValueError:
        raise PermissionDenied("authenticate", DenialReason.NOT_AUTHENTICATED)
    return ResolveActorUseCase().execute(user_id, uow)


# ---------------------------------------------------------------------------
# Envelope helper
# ---------------------------------------------------------------------------

def _ok(data: Any) -> Dict:
    """Wrap a DTO or list of DTOs in the standard success envelope."""
    if hasattr(data, "__dataclass_fields__"):
        import dataclasses
        return {"data": dataclasses.asdict(data)}
    if isinstance(data, list):
        import dataclasses
        return {
            "data": [
                dataclasses.asdict(item) if hasattr(item, "__dataclass_fields__") else item
                for item in data
            ]
        }
    return {"data": data}


def _enum_validator(enum_cls, field_name: str):
    def _check(v: Optional[str]) -> Optional[str]:
        if v is None:
            return v
        valid = {m.value for m in enum_cls}
        if v not in valid:
            raise ValueError(f"{field_name} must be one of: {sorted(valid)}")
        return v
    return _check


_check_role = _enum_validator(Role, "role")
_check_status = _enum_validator(RequestStatus, "status")
_check_type = _enum_validator(RequestType, "type")


# ===========================================================================
# REQUEST BODY SCHEMAS  (Pydantic v2)
# ===========================================================================

# ---------------------------------------------------------------------------
# User schemas
# ---------------------------------------------------------------------------

class CreateUserRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    email: EmailStr
    role: str = Field(..., description="One of: ADMIN, MANAGER, TECHNICIAN")
    team_id: Optional[uuid.UUID] = None

    @field_validator("role")
    @classmethod
    def validate_role(cls, v: str) -> str:
        return _check_role(v)


class UpdateUserRequest(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=200)
    email: Optional[EmailStr] = None
    role: Optional[str] = None
    team_id: Optional[uuid.UUID] = None
    clear_team: bool = Field(default=False, description="Remove the user from their team.")
    is_active: Optional[bool] = None

    @field_validator("role")
    @classmethod
    def validate_role(cls, v: Optional[str]) -> Optional[str]:
        return _check_role(v)


# ---------------------------------------------------------------------------
# Team schemas
# ---------------------------------------------------------------------------

class TeamRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)


# ---------------------------------------------------------------------------
# Equipment schemas
# ---------------------------------------------------------------------------

class CreateEquipmentRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    serial_number: str = Field(..., min_length=1, max_length=100)
    department: str = Field(default="", max_length=200)
    location: str = Field(default="", max_length=200)
    purchase_date: date
    warranty_end: Optional[date] = None
    team_id: uuid.UUID


class UpdateEquipmentRequest(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=200)
    serial_number: Optional[str] = Field(default=None, min_length=1, max_length=100)
    department: Optional[str] = Field(default=None, max_length=200)
    location: Optional[str] = Field(default=None, max_length=200)
    purchase_date: Optional[date] = None
    warranty_end: Optional[date] = None
    team_id: Optional[uuid.UUID] = None


# ---------------------------------------------------------------------------
# Maintenance request schemas
# ---------------------------------------------------------------------------

class CreateMaintenanceRequestRequest(BaseModel):
    subject: str = Field(..., min_length=1, max_length=300)
    description: str = Field(default="")
    type: str = Field(..., description="One of: CORRECTIVE, PREVENTIVE")
    equipment_id: uuid.UUID
    scheduled_date: Optional[datetime] = Field(
        default=None, description="Required for PREVENTIVE requests."
    )

    @field_validator("type")
    @classmethod
    def validate_type(cls, v: str) -> str:
        return _check_type(v)


class AssignRequestRequest(BaseModel):
    technician_id: uuid.UUID


class UpdateStatusRequest(BaseModel):
    status: str = Field(..., description="One of: NEW, IN_PROGRESS, REPAIRED, SCRAP")

    @field_validator("status")
    @classmethod
    def validate_status(cls, v: str) -> str:
        return _check_status(v)


class CompleteRequestRequest(BaseModel):
    duration_hours: float = Field(
        ..., allow_inf_nan=False, description="Hours spent on the repair; must be a positive number."
    )


# ===========================================================================
# ROUTERS
# ===========================================================================

api_v1 = APIRouter(prefix="/api/v1")


# ---------------------------------------------------------------------------
# Me
# ---------------------------------------------------------------------------

me_router = APIRouter(prefix="/me", tags=["Me"])


@me_router.get("", summary="The authenticated user")
def get_me(
    actor: Actor = Depends(get_current_actor),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    from application import GetUserUseCase
    return _ok(GetUserUseCase().execute(actor, actor.id, uow))


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------

user_router = APIRouter(prefix="/users", tags=["Users"])


@user_router.post(
    "",
    status_code=status.HTTP_201_CREATED,
    summary="Create a user (ADMIN)",
)
def create_user(
    body: CreateUserRequest,
    actor: Actor = Depends(get_current_actor),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    from application import CreateUserCommand, CreateUserUseCase
    cmd = CreateUserCommand(
        actor=actor,
        name=body.name,
        email=str(body.email),
        role=Role(body.role),
        team_id=body.team_id,
    )
    return _ok(CreateUserUseCase().execute(cmd, uow))


@user_router.get("", summary="List users (ADMIN: all, MANAGER: own team)")
def list_users(
    team_id: Optional[uuid.UUID] = Query(default=None),
    role: Optional[Role] = Query(default=None),
    is_active: Optional[bool] = Query(default=None),
    actor: Actor = Depends(get_current_actor),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    from application import ListUsersUseCase
    result = ListUsersUseCase().execute(actor, uow, team_id=team_id, role=role, is_active=is_active)
    return _ok(result)


@user_router.get("/{user_id}", summary="Get a user by ID")
def get_user(
    user_id: uuid.UUID = Path(...),
    actor: Actor = Depends(get_current_actor),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    from application import GetUserUseCase
    return _ok(GetUserUseCase().execute(actor, user_id, uow))


@user_router.patch("/{user_id}", summary="Update a user (ADMIN)")
def update_user(
    body: UpdateUserRequest,
    user_id: uuid.UUID = Path(...),
    actor: Actor = Depends(get_current_actor),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    from application import UpdateUserCommand, UpdateUserUseCase
    cmd = UpdateUserCommand(
        actor=actor,
        user_id=user_id,
        name=body.name,
        email=str(body.email) if body.email is not None else None,
        role=Role(body.role) if body.role else None,
        team_id=body.team_id,
        clear_team=body.clear_team,
        is_active=body.is_active,
    )
    return _ok(UpdateUserUseCase().execute(cmd, uow))


@user_router.delete(
    "/{user_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete a user (ADMIN)",
)
def delete_user(
    user_id: uuid.UUID = Path(...),
    actor: Actor = Depends(get_current_actor),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    """
    Users referenced by an assignment or by the audit log cannot be
    deleted; set `is_active` to false instead.
    """
    from application import DeleteUserCommand, DeleteUserUseCase
    DeleteUserUseCase().execute(DeleteUserCommand(actor=actor, user_id=user_id), uow)


# ---------------------------------------------------------------------------
# Teams
# ---------------------------------------------------------------------------

team_router = APIRouter(prefix="/teams", tags=["Teams"])


@team_router.post(
    "",
    status_code=status.HTTP_201_CREATED,
    summary="Create a team (ADMIN)",
)
def create_team(
    body: TeamRequest,
    actor: Actor = Depends(get_current_actor),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    from application import CreateTeamCommand, CreateTeamUseCase
    return _ok(CreateTeamUseCase().execute(CreateTeamCommand(actor=actor, name=body.name), uow))


@team_router.get("", summary="List teams visible to the caller")
def list_teams(
    actor: Actor = Depends(get_current_actor),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    from application import ListTeamsUseCase
    return _ok(ListTeamsUseCase().execute(actor, uow))


@team_router.get("/{team_id}", summary="Get a team by ID")
def get_team(
    team_id: uuid.UUID = Path(...),
    actor: Actor = Depends(get_current_actor),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    from application import GetTeamUseCase
    return _ok(GetTeamUseCase().execute(actor, team_id, uow))


@team_router.patch("/{team_id}", summary="Rename a team (ADMIN)")
def rename_team(
    body: TeamRequest,
    team_id: uuid.UUID = Path(...),
    actor: Actor = Depends(get_current_actor),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    from application import RenameTeamCommand, RenameTeamUseCase
    cmd = RenameTeamCommand(actor=actor, team_id=team_id, name=body.name)
    return _ok(RenameTeamUseCase().execute(cmd, uow))


@team_router.delete(
    "/{team_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete an empty team (ADMIN)",
)
def delete_team(
    team_id: uuid.UUID = Path(...),
    actor: Actor = Depends(get_current_actor),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    from application import DeleteTeamCommand, DeleteTeamUseCase
    DeleteTeamUseCase().execute(DeleteTeamCommand(actor=actor, team_id=team_id), uow)


# ---------------------------------------------------------------------------
# Equipment
# ---------------------------------------------------------------------------

equipment_router = APIRouter(prefix="/equipment", tags=["Equipment"])


@equipment_router.post(
    "",
    status_code=status.HTTP_201_CREATED,
    summary="Register equipment (ADMIN, or MANAGER of the team)",
)
def create_equipment(
    body: CreateEquipmentRequest,
    actor: Actor = Depends(get_current_actor),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    from application import CreateEquipmentCommand, CreateEquipmentUseCase
    cmd = CreateEquipmentCommand(
        actor=actor,
        name=body.name,
        serial_number=body.serial_number,
        department=body.department,
        location=body.location,
        purchase_date=body.purchase_date,
        warranty_end=body.warranty_end,
        team_id=body.team_id,
    )
    return _ok(CreateEquipmentUseCase().execute(cmd, uow))


@equipment_router.get("", summary="List equipment visible to the caller")
def list_equipment(
    team_id: Optional[uuid.UUID] = Query(default=None),
    include_scrapped: bool = Query(default=True),
    search: Optional[str] = Query(default=None, description="Matches name or serial number."),
    department: Optional[str] = Query(default=None),
    location: Optional[str] = Query(default=None),
    actor: Actor = Depends(get_current_actor),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    from application import ListEquipmentUseCase
    filters = EquipmentFilter(
        team_id=team_id,
        include_scrapped=include_scrapped,
        search=search,
        department=department,
        location=location,
    )
    return _ok(ListEquipmentUseCase().execute(actor, filters, uow))


@equipment_router.get("/{equipment_id}", summary="Get equipment by ID")
def get_equipment(
    equipment_id: uuid.UUID = Path(...),
    actor: Actor = Depends(get_current_actor),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    from application import GetEquipmentUseCase
    return _ok(GetEquipmentUseCase().execute(actor, equipment_id, uow))


@equipment_router.patch("/{equipment_id}", summary="Update equipment details")
def update_equipment(
    body: UpdateEquipmentRequest,
    equipment_id: uuid.UUID = Path(...),
    actor: Actor = Depends(get_current_actor),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    """Scrapped equipment cannot be modified."""
    from application import UpdateEquipmentCommand, UpdateEquipmentUseCase
    cmd = UpdateEquipmentCommand(
        actor=actor,
        equipment_id=equipment_id,
        name=body.name,
        serial_number=body.serial_number,
        department=body.department,
        location=body.location,
        purchase_date=body.purchase_date,
        warranty_end=body.warranty_end,
        team_id=body.team_id,
    )
    return _ok(UpdateEquipmentUseCase().execute(cmd, uow))


@equipment_router.post("/{equipment_id}/scrap", summary="Scrap equipment")
def scrap_equipment(
    equipment_id: uuid.UUID = Path(...),
    actor: Actor = Depends(get_current_actor),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    from application import ScrapEquipmentCommand, ScrapEquipmentUseCase
    cmd = ScrapEquipmentCommand(actor=actor, equipment_id=equipment_id)
    return _ok(ScrapEquipmentUseCase().execute(cmd, uow))


@equipment_router.delete(
    "/{equipment_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete equipment without maintenance history",
)
def delete_equipment(
    equipment_id: uuid.UUID = Path(...),
    actor: Actor = Depends(get_current_actor),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    from application import DeleteEquipmentCommand, DeleteEquipmentUseCase
    DeleteEquipmentUseCase().execute(
        DeleteEquipmentCommand(actor=actor, equipment_id=equipment_id), uow
    )


# ---------------------------------------------------------------------------
# Maintenance Requests
# ---------------------------------------------------------------------------

request_router = APIRouter(prefix="/requests", tags=["Maintenance Requests"])


@request_router.post(
    "",
    status_code=status.HTTP_201_CREATED,
    summary="Open a maintenance request (ADMIN, MANAGER)",
)
def create_request(
    body: CreateMaintenanceRequestRequest,
    actor: Actor = Depends(get_current_actor),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    """
    The request inherits the team of its equipment and starts in NEW.
    PREVENTIVE requests need a `scheduled_date` from today up to the
    configured horizon; CORRECTIVE requests may not be scheduled ahead.
    """
    cmd = CreateRequestCommand(
        actor=actor,
        subject=body.subject,
        description=body.description,
        type=RequestType(body.type),
        equipment_id=body.equipment_id,
        scheduled_date=body.scheduled_date,
    )
    return _ok(CreateRequestUseCase().execute(cmd, uow))


@request_router.get("", summary="List maintenance requests visible to the caller")
def list_requests(
    team_id: Optional[uuid.UUID] = Query(default=None),
    assigned_to_id: Optional[uuid.UUID] = Query(default=None),
    equipment_id: Optional[uuid.UUID] = Query(default=None),
    request_status: Optional[RequestStatus] = Query(default=None, alias="status"),
    request_type: Optional[RequestType] = Query(default=None, alias="type"),
    search: Optional[str] = Query(default=None, description="Matches subject or description."),
    scheduled_from: Optional[datetime] = Query(default=None),
    scheduled_to: Optional[datetime] = Query(default=None),
    overdue: bool = Query(default=False),
    page: int = Query(default=1, ge=1),
    limit: Optional[int] = Query(default=None, ge=1),
    actor: Actor = Depends(get_current_actor),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    """Asking for another team's requests is refused with 403."""
    from application import ListRequestsUseCase
    filters = RequestFilter(
        team_id=team_id,
        assigned_to_id=assigned_to_id,
        equipment_id=equipment_id,
        status=request_status,
        type=request_type,
        search=search,
        scheduled_from=scheduled_from,
        scheduled_to=scheduled_to,
        overdue=overdue,
    )
    return _ok(ListRequestsUseCase().execute(actor, filters, uow, page=page, limit=limit))


@request_router.get("/{request_id}", summary="Get a maintenance request by ID")
def get_request(
    request_id: uuid.UUID = Path(...),
    include_logs: bool = Query(default=False),
    actor: Actor = Depends(get_current_actor),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    from application import GetRequestUseCase
    return _ok(GetRequestUseCase().execute(actor, request_id, uow, include_logs=include_logs))


@request_router.post("/{request_id}/assign", summary="Assign a technician (ADMIN, MANAGER)")
def assign_request(
    body: AssignRequestRequest,
    request_id: uuid.UUID = Path(...),
    actor: Actor = Depends(get_current_actor),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    """
    The technician must belong to the request's team.  The request moves
    to IN_PROGRESS; an IN_PROGRESS request may be re-assigned.
    """
    cmd = AssignRequestCommand(actor=actor, request_id=request_id, technician_id=body.technician_id)
    return _ok(AssignRequestUseCase().execute(cmd, uow))


@request_router.patch("/{request_id}/status", summary="Change the status of a request")
def update_request_status(
    body: UpdateStatusRequest,
    request_id: uuid.UUID = Path(...),
    actor: Actor = Depends(get_current_actor),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    """
    Allowed: NEW → IN_PROGRESS | SCRAP, IN_PROGRESS → REPAIRED | SCRAP.
    Technicians may only move requests assigned to them to REPAIRED or SCRAP.
    """
    cmd = UpdateRequestStatusCommand(
        actor=actor,
        request_id=request_id,
        new_status=RequestStatus(body.status),
    )
    return _ok(UpdateRequestStatusUseCase().execute(cmd, uow))


@request_router.post("/{request_id}/complete", summary="Mark a request repaired")
def complete_request(
    body: CompleteRequestRequest,
    request_id: uuid.UUID = Path(...),
    actor: Actor = Depends(get_current_actor),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    cmd = CompleteRequestCommand(
        actor=actor,
        request_id=request_id,
        duration_hours=body.duration_hours,
    )
    return _ok(CompleteRequestUseCase().execute(cmd, uow))


@request_router.post("/{request_id}/scrap", summary="Scrap a request and its equipment")
def scrap_request(
    request_id: uuid.UUID = Path(...),
    actor: Actor = Depends(get_current_actor),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    cmd = ScrapRequestCommand(actor=actor, request_id=request_id)
    return _ok(ScrapRequestUseCase().execute(cmd, uow))


@request_router.get("/{request_id}/logs", summary="Status history of a request")
def get_request_logs(
    request_id: uuid.UUID = Path(...),
    actor: Actor = Depends(get_current_actor),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    from application import GetRequestLogsUseCase
    return _ok(GetRequestLogsUseCase().execute(actor, request_id, uow))


# ---------------------------------------------------------------------------
# Audit Log
# ---------------------------------------------------------------------------

log_router = APIRouter(prefix="/logs", tags=["Audit Log"])


@log_router.get("", summary="Search status changes across requests")
def list_request_logs(
    request_id: Optional[uuid.UUID] = Query(default=None),
    changed_by_id: Optional[uuid.UUID] = Query(default=None),
    new_status: Optional[RequestStatus] = Query(default=None, alias="status"),
    from_date: Optional[datetime] = Query(default=None),
    to_date: Optional[datetime] = Query(default=None),
    page: int = Query(default=1, ge=1),
    limit: Optional[int] = Query(default=None, ge=1),
    actor: Actor = Depends(get_current_actor),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    from application import ListRequestLogsUseCase
    filters = LogFilter(
        request_id=request_id,
        changed_by_id=changed_by_id,
        status=new_status,
        from_date=from_date,
        to_date=to_date,
    )
    return _ok(ListRequestLogsUseCase().execute(actor, filters, uow, page=page, limit=limit))


# ---------------------------------------------------------------------------
# Register all routers
# ---------------------------------------------------------------------------

api_v1.include_router(me_router)
api_v1.include_router(user_router)
api_v1.include_router(team_router)
api_v1.include_router(equipment_router)
api_v1.include_router(request_router)
api_v1.include_router(log_router)

app.include_router(api_v1)

# ---------------------------------------------------------------------------
# MCP Server — exposes all API routes as MCP tools
# Accessible at: http://localhost:8000/mcp
# ---------------------------------------------------------------------------
mcp = FastApiMCP(app)
mcp.mount()


# ===========================================================================
# HEALTH CHECK
# ===========================================================================

@app.get("/health", tags=["Health"], summary="Service health check")
def health():
    return {"status": "ok"}


# ===========================================================================
# OPENAPI CUSTOMISATION — tag order and descriptions
# ===========================================================================

tags_metadata = [
    {
        "name": "Health",
        "description": "Liveness probe.",
    },
    {
        "name": "Me",
        "description": "The user behind the Bearer token.",
    },
    {
        "name": "Users",
        "description": (
            "User administration.  Users referenced by the audit log are "
            "deactivated rather than deleted."
        ),
    },
    {
        "name": "Teams",
        "description": "Teams own users, equipment and maintenance requests.",
    },
    {
        "name": "Equipment",
        "description": (
            "The equipment register.  Scrapping is one-way: scrapped equipment "
            "accepts no new requests and no updates."
        ),
    },
    {
        "name": "Maintenance Requests",
        "description": (
            "The request lifecycle NEW → IN_PROGRESS → REPAIRED | SCRAP.  "
            "Every status change is recorded in the audit log in the same "
            "transaction."
        ),
    },
    {
        "name": "Audit Log",
        "description": "Immutable, append-only history of request status changes.",
    },
]

app.openapi_tags = tags_metadata
