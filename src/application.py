"""
application.py

Application layer for the Maintenance Tracker.

Overview
--------
The application layer sits between the presentation layer (API) and the
domain / service layer.  It is responsible for:

  1. Defining clean output DTOs (dataclasses) that carry only the data the
     presentation layer needs; no raw domain objects are leaked upward.
  2. Declaring abstract Repository interfaces so that the application layer
     remains persistence-agnostic (implementations live in infrastructure.py).
  3. Declaring the UnitOfWork abstraction so that every write of a use case
     (request, equipment, audit log) lands in one atomic transaction.
  4. Implementing Use Case handlers, one class per user-facing operation,
     that run the authorization gate, the service rules, the repository
     writes and the audit append in the correct order.

Structure
---------
DTOs
    TeamDTO, UserDTO, EquipmentDTO, MaintenanceRequestDTO, RequestLogDTO
    TeamRefDTO, UserRefDTO, EquipmentRefDTO (resolved associations)
    PageDTO, RequestPageDTO, LogPageDTO

Query filters
    RequestFilter, LogFilter, EquipmentFilter

Repository interfaces
    AbstractTeamRepository
    AbstractUserRepository
    AbstractEquipmentRepository
    AbstractMaintenanceRequestRepository
    AbstractRequestLogRepository

Unit of Work
    AbstractUnitOfWork

Use Cases
    --- Request lifecycle ---
    CreateRequestUseCase
    AssignRequestUseCase
    UpdateRequestStatusUseCase
    CompleteRequestUseCase
    ScrapRequestUseCase
    GetRequestUseCase
    ListRequestsUseCase

    --- Audit log ---
    GetRequestLogsUseCase
    ListRequestLogsUseCase

    --- Team management ---
    CreateTeamUseCase, RenameTeamUseCase, DeleteTeamUseCase
    GetTeamUseCase, ListTeamsUseCase

    --- User management ---
    CreateUserUseCase, UpdateUserUseCase, DeleteUserUseCase
    GetUserUseCase, ListUsersUseCase

    --- Equipment register ---
    CreateEquipmentUseCase, UpdateEquipmentUseCase, ScrapEquipmentUseCase
    DeleteEquipmentUseCase, GetEquipmentUseCase, ListEquipmentUseCase

    --- Identity ---
    ResolveActorUseCase
    SeedAdminUseCase

Design notes
------------
- Every use case receives the acting identity explicitly (an Actor) and a
  UnitOfWork; there is no ambient "current user".
- All role and team decisions are delegated to policy.py.
- All timestamps flowing out are ISO-8601 strings (UTC) for easy JSON
  serialisation.
- Errors bubble up as the tagged DomainError subclasses from model.py; the
  UnitOfWork rolls back before they leave the `with` block.
"""

from __future__ import annotations

import abc
import math
import uuid
from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Dict, List, Optional, Tuple

import structlog

import policy
from config import settings
from model import (
    Actor,
    ConflictError,
    DenialReason,
    Equipment,
    MaintenanceRequest,
    NotFoundError,
    PermissionDenied,
    RequestLog,
    RequestStatus,
    RequestType,
    Role,
    Team,
    User,
    ValidationError,
)
from service import (
    AuditService,
    EquipmentService,
    RequestService,
    TeamService,
    UserService,
)

log = structlog.get_logger(__name__)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _fmt(dt: Optional[datetime]) -> Optional[str]:
    """Convert a datetime to an ISO-8601 UTC string, or None."""
    if dt is None:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.isoformat()


def _fmt_date(d: Optional[date]) -> Optional[str]:
    return d.isoformat() if d else None


def _id(value: Optional[uuid.UUID]) -> Optional[str]:
    return str(value) if value else None


# ===========================================================================
# DTO DEFINITIONS
# ===========================================================================

# ---------------------------------------------------------------------------
# Reference DTOs (resolved associations)
# ---------------------------------------------------------------------------

@dataclass
class TeamRefDTO:
    id: str
    name: str


@dataclass
class UserRefDTO:
    id: str
    name: str
    role: str


@dataclass
class EquipmentRefDTO:
    id: str
    name: str
    serial_number: str
    is_scrapped: bool


# ---------------------------------------------------------------------------
# Organisation DTOs
# ---------------------------------------------------------------------------

@dataclass
class TeamDTO:
    id: str
    name: str
    created_at: str
    updated_at: str


@dataclass
class UserDTO:
    id: str
    name: str
    email: str
    role: str
    team_id: Optional[str]
    is_active: bool
    created_at: str
    updated_at: str


# ---------------------------------------------------------------------------
# Equipment DTOs
# ---------------------------------------------------------------------------

@dataclass
class EquipmentDTO:
    id: str
    name: str
    serial_number: str
    department: str
    location: str
    purchase_date: Optional[str]
    warranty_end: Optional[str]
    team_id: str
    is_scrapped: bool
    created_at: str
    updated_at: str


# ---------------------------------------------------------------------------
# Request DTOs
# ---------------------------------------------------------------------------

@dataclass
class RequestLogDTO:
    id: str
    request_id: str
    sequence_number: int
    old_status: Optional[str]
    new_status: str
    changed_by_id: str
    changed_by: Optional[UserRefDTO]
    changed_at: str


@dataclass
class MaintenanceRequestDTO:
    """A request with its equipment, team, creator and assignee resolved."""
    id: str
    subject: str
    description: str
    type: str
    status: str
    equipment_id: str
    team_id: str
    assigned_to_id: Optional[str]
    scheduled_date: Optional[str]
    duration_hours: Optional[float]
    created_by_id: str
    created_at: str
    updated_at: str
    is_overdue: bool
    equipment: Optional[EquipmentRefDTO]
    team: Optional[TeamRefDTO]
    created_by: Optional[UserRefDTO]
    assigned_to: Optional[UserRefDTO]
    logs: Optional[List[RequestLogDTO]] = None


# ---------------------------------------------------------------------------
# Pagination DTOs
# ---------------------------------------------------------------------------

@dataclass
class PageDTO:
    page: int
    limit: int
    total: int
    pages: int


@dataclass
class RequestPageDTO:
    items: List[MaintenanceRequestDTO]
    pagination: PageDTO


@dataclass
class LogPageDTO:
    items: List[RequestLogDTO]
    pagination: PageDTO


# ===========================================================================
# DTO ASSEMBLERS
# ===========================================================================

class _Assembler:
    """Converts domain model instances into DTOs."""

    @staticmethod
    def team_ref(t: Optional[Team]) -> Optional[TeamRefDTO]:
        return TeamRefDTO(id=str(t.id), name=t.name) if t else None

    @staticmethod
    def user_ref(u: Optional[User]) -> Optional[UserRefDTO]:
        return UserRefDTO(id=str(u.id), name=u.name, role=u.role.value) if u else None

    @staticmethod
    def equipment_ref(e: Optional[Equipment]) -> Optional[EquipmentRefDTO]:
        if e is None:
            return None
        return EquipmentRefDTO(
            id=str(e.id),
            name=e.name,
            serial_number=e.serial_number,
            is_scrapped=e.is_scrapped,
        )

    @staticmethod
    def team(t: Team) -> TeamDTO:
        return TeamDTO(
            id=str(t.id),
            name=t.name,
            created_at=_fmt(t.created_at),
            updated_at=_fmt(t.updated_at),
        )

    @staticmethod
    def user(u: User) -> UserDTO:
        return UserDTO(
            id=str(u.id),
            name=u.name,
            email=u.email,
            role=u.role.value,
            team_id=_id(u.team_id),
            is_active=u.is_active,
            created_at=_fmt(u.created_at),
            updated_at=_fmt(u.updated_at),
        )

    @staticmethod
    def equipment(e: Equipment) -> EquipmentDTO:
        return EquipmentDTO(
            id=str(e.id),
            name=e.name,
            serial_number=e.serial_number,
            department=e.department,
            location=e.location,
            purchase_date=_fmt_date(e.purchase_date),
            warranty_end=_fmt_date(e.warranty_end),
            team_id=str(e.team_id),
            is_scrapped=e.is_scrapped,
            created_at=_fmt(e.created_at),
            updated_at=_fmt(e.updated_at),
        )

    @staticmethod
    def log_entry(entry: RequestLog, changed_by: Optional[User]) -> RequestLogDTO:
        return RequestLogDTO(
            id=str(entry.id),
            request_id=str(entry.request_id),
            sequence_number=entry.sequence_number,
            old_status=entry.old_status.value if entry.old_status else None,
            new_status=entry.new_status.value,
            changed_by_id=str(entry.changed_by_id),
            changed_by=_Assembler.user_ref(changed_by),
            changed_at=_fmt(entry.changed_at),
        )

    @staticmethod
    def request(
        r: MaintenanceRequest,
        equipment: Optional[Equipment],
        team: Optional[Team],
        created_by: Optional[User],
        assigned_to: Optional[User],
        is_overdue: bool,
        logs: Optional[List[RequestLogDTO]] = None,
    ) -> MaintenanceRequestDTO:
        return MaintenanceRequestDTO(
            id=str(r.id),
            subject=r.subject,
            description=r.description,
            type=r.type.value,
            status=r.status.value,
            equipment_id=str(r.equipment_id),
            team_id=str(r.team_id),
            assigned_to_id=_id(r.assigned_to_id),
            scheduled_date=_fmt(r.scheduled_date),
            duration_hours=r.duration_hours,
            created_by_id=str(r.created_by_id),
            created_at=_fmt(r.created_at),
            updated_at=_fmt(r.updated_at),
            is_overdue=is_overdue,
            equipment=_Assembler.equipment_ref(equipment),
            team=_Assembler.team_ref(team),
            created_by=_Assembler.user_ref(created_by),
            assigned_to=_Assembler.user_ref(assigned_to),
            logs=logs,
        )


# ===========================================================================
# QUERY FILTERS
# ===========================================================================

@dataclass
class RequestFilter:
    team_id: Optional[uuid.UUID] = None
    assigned_to_id: Optional[uuid.UUID] = None
    equipment_id: Optional[uuid.UUID] = None
    status: Optional[RequestStatus] = None
    type: Optional[RequestType] = None
    search: Optional[str] = None            # subject / description, case-insensitive
    scheduled_from: Optional[datetime] = None
    scheduled_to: Optional[datetime] = None
    overdue: bool = False                   # scheduled in the past and not terminal


@dataclass
class LogFilter:
    request_id: Optional[uuid.UUID] = None
    changed_by_id: Optional[uuid.UUID] = None
    status: Optional[RequestStatus] = None  # matches new_status
    from_date: Optional[datetime] = None
    to_date: Optional[datetime] = None


@dataclass
class EquipmentFilter:
    team_id: Optional[uuid.UUID] = None
    include_scrapped: bool = True
    search: Optional[str] = None            # name / serial number
    department: Optional[str] = None
    location: Optional[str] = None


# ===========================================================================
# REPOSITORY INTERFACES
# ===========================================================================

class AbstractTeamRepository(abc.ABC):
    @abc.abstractmethod
    def get(self, team_id: uuid.UUID) -> Optional[Team]: ...
    @abc.abstractmethod
    def get_by_name(self, name: str) -> Optional[Team]: ...
    @abc.abstractmethod
    def list(self, scope: policy.ListScope) -> List[Team]: ...
    @abc.abstractmethod
    def save(self, team: Team) -> None: ...
    @abc.abstractmethod
    def delete(self, team: Team) -> None: ...


class AbstractUserRepository(abc.ABC):
    @abc.abstractmethod
    def get(self, user_id: uuid.UUID) -> Optional[User]: ...
    @abc.abstractmethod
    def get_by_email(self, email: str) -> Optional[User]: ...
    @abc.abstractmethod
    def list(
        self,
        scope: policy.ListScope,
        team_id: Optional[uuid.UUID] = None,
        role: Optional[Role] = None,
        is_active: Optional[bool] = None,
    ) -> List[User]: ...
    @abc.abstractmethod
    def count_for_team(self, team_id: uuid.UUID) -> int: ...
    @abc.abstractmethod
    def save(self, user: User) -> None: ...
    @abc.abstractmethod
    def delete(self, user: User) -> None: ...


class AbstractEquipmentRepository(abc.ABC):
    @abc.abstractmethod
    def get(self, equipment_id: uuid.UUID) -> Optional[Equipment]: ...
    @abc.abstractmethod
    def get_by_serial(self, serial_number: str) -> Optional[Equipment]: ...
    @abc.abstractmethod
    def list(self, filters: EquipmentFilter, scope: policy.ListScope) -> List[Equipment]: ...
    @abc.abstractmethod
    def count_for_team(self, team_id: uuid.UUID) -> int: ...
    @abc.abstractmethod
    def save(self, item: Equipment) -> None: ...
    @abc.abstractmethod
    def delete(self, item: Equipment) -> None: ...


class AbstractMaintenanceRequestRepository(abc.ABC):
    @abc.abstractmethod
    def get(self, request_id: uuid.UUID) -> Optional[MaintenanceRequest]: ...
    @abc.abstractmethod
    def list(
        self,
        filters: RequestFilter,
        scope: policy.ListScope,
        page: int,
        limit: int,
    ) -> Tuple[List[MaintenanceRequest], int]: ...
    @abc.abstractmethod
    def count_for_team(self, team_id: uuid.UUID) -> int: ...
    @abc.abstractmethod
    def count_for_equipment(self, equipment_id: uuid.UUID) -> int: ...
    @abc.abstractmethod
    def count_assigned_to(self, user_id: uuid.UUID, open_only: bool = False) -> int: ...
    @abc.abstractmethod
    def save(self, request: MaintenanceRequest) -> None: ...


class AbstractRequestLogRepository(abc.ABC):
    """Append-only: there is deliberately no update or delete."""
    @abc.abstractmethod
    def list_for_request(self, request_id: uuid.UUID) -> List[RequestLog]: ...
    @abc.abstractmethod
    def search(
        self,
        filters: LogFilter,
        scope: policy.ListScope,
        page: int,
        limit: int,
    ) -> Tuple[List[RequestLog], int]: ...
    @abc.abstractmethod
    def count_by_user(self, user_id: uuid.UUID) -> int: ...
    @abc.abstractmethod
    def add(self, entry: RequestLog) -> None: ...


# ===========================================================================
# UNIT OF WORK
# ===========================================================================

class AbstractUnitOfWork(abc.ABC):
    """
    Groups all repositories under a single transactional boundary.
    Use as a context manager:

        with uow:
            uow.requests.save(request)
            uow.logs.add(entry)
            uow.commit()

    Leaving the block with an exception rolls everything back.
    """
    teams: AbstractTeamRepository
    users: AbstractUserRepository
    equipment: AbstractEquipmentRepository
    requests: AbstractMaintenanceRequestRepository
    logs: AbstractRequestLogRepository

    def __enter__(self) -> "AbstractUnitOfWork":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        if exc_type:
            self.rollback()
        else:
            self.commit()

    @abc.abstractmethod
    def commit(self) -> None: ...

    @abc.abstractmethod
    def rollback(self) -> None: ...


# ===========================================================================
# SERVICE SINGLETONS (shared across use cases)
# ===========================================================================

_team_svc = TeamService()
_user_svc = UserService()
_equipment_svc = EquipmentService()
_request_svc = RequestService(preventive_horizon_years=settings.preventive_max_years)
_audit_svc = AuditService()


# ===========================================================================
# USE CASE HELPERS
# ===========================================================================

def _get_team_or_raise(uow: AbstractUnitOfWork, team_id: uuid.UUID) -> Team:
    team = uow.teams.get(team_id)
    if team is None:
        raise NotFoundError("Team", team_id)
    return team


def _get_user_or_raise(uow: AbstractUnitOfWork, user_id: uuid.UUID) -> User:
    user = uow.users.get(user_id)
    if user is None:
        raise NotFoundError("User", user_id)
    return user


def _get_equipment_or_raise(uow: AbstractUnitOfWork, equipment_id: uuid.UUID) -> Equipment:
    item = uow.equipment.get(equipment_id)
    if item is None:
        raise NotFoundError("Equipment", equipment_id)
    return item


def _get_request_or_raise(uow: AbstractUnitOfWork, request_id: uuid.UUID) -> MaintenanceRequest:
    request = uow.requests.get(request_id)
    if request is None:
        raise NotFoundError("MaintenanceRequest", request_id)
    return request


def _append_log(
    uow: AbstractUnitOfWork,
    request: MaintenanceRequest,
    old_status: Optional[RequestStatus],
    actor: Actor,
) -> RequestLog:
    """Write the audit entry for the request's current status in the open unit of work."""
    entry = _audit_svc.record_transition(
        request_id=request.id,
        old_status=old_status,
        new_status=request.status,
        changed_by_id=actor.id,
        existing_entries=uow.logs.list_for_request(request.id),
    )
    uow.logs.add(entry)
    return entry


def _cascade_scrap(uow: AbstractUnitOfWork, request: MaintenanceRequest) -> bool:
    equipment = uow.equipment.get(request.equipment_id)
    if equipment is None or not _equipment_svc.cascade_scrap(equipment):
        return False
    uow.equipment.save(equipment)
    return True


def _page_params(page: Optional[int], limit: Optional[int]) -> Tuple[int, int]:
    page = max(1, page or 1)
    limit = limit or settings.default_page_size
    return page, max(1, min(limit, settings.max_page_size))


def _pagination(page: int, limit: int, total: int) -> PageDTO:
    return PageDTO(page=page, limit=limit, total=total, pages=math.ceil(total / limit) if total else 0)


class _RequestView:
    """
    Resolves the associations of requests and log entries, caching each
    lookup for the lifetime of one use case call.
    """

    def __init__(self, uow: AbstractUnitOfWork):
        self.uow = uow
        self._users: Dict[uuid.UUID, Optional[User]] = {}
        self._teams: Dict[uuid.UUID, Optional[Team]] = {}
        self._equipment: Dict[uuid.UUID, Optional[Equipment]] = {}

    def _user(self, user_id: Optional[uuid.UUID]) -> Optional[User]:
        if user_id is None:
            return None
        if user_id not in self._users:
            self._users[user_id] = self.uow.users.get(user_id)
        return self._users[user_id]

    def _team(self, team_id: uuid.UUID) -> Optional[Team]:
        if team_id not in self._teams:
            self._teams[team_id] = self.uow.teams.get(team_id)
        return self._teams[team_id]

    def _item(self, equipment_id: uuid.UUID) -> Optional[Equipment]:
        if equipment_id not in self._equipment:
            self._equipment[equipment_id] = self.uow.equipment.get(equipment_id)
        return self._equipment[equipment_id]

    def log_entry(self, entry: RequestLog) -> RequestLogDTO:
        return _Assembler.log_entry(entry, self._user(entry.changed_by_id))

    def request(self, r: MaintenanceRequest, include_logs: bool = False) -> MaintenanceRequestDTO:
        logs = None
        if include_logs:
            logs = [
                self.log_entry(e)
                for e in _audit_svc.history(self.uow.logs.list_for_request(r.id))
            ]
        return _Assembler.request(
            r,
            equipment=self._item(r.equipment_id),
            team=self._team(r.team_id),
            created_by=self._user(r.created_by_id),
            assigned_to=self._user(r.assigned_to_id),
            is_overdue=_request_svc.is_overdue(r),
            logs=logs,
        )


# ===========================================================================
# USE CASES — REQUEST LIFECYCLE
# ===========================================================================

@dataclass
class CreateRequestCommand:
    actor: Actor
    subject: str
    description: str
    type: RequestType
    equipment_id: uuid.UUID
    scheduled_date: Optional[datetime] = None


class CreateRequestUseCase:
    """
    Open a NEW maintenance request against active equipment.  The request
    inherits the equipment's team and the creation is logged (None → NEW).
    """

    def execute(self, cmd: CreateRequestCommand, uow: AbstractUnitOfWork) -> MaintenanceRequestDTO:
        with uow:
            policy.require_create_request(cmd.actor)
            equipment = _equipment_svc.assert_eligible_for_request(
                uow.equipment.get(cmd.equipment_id), cmd.equipment_id
            )
            _get_user_or_raise(uow, cmd.actor.id)

            request = _request_svc.create_request(
                subject=cmd.subject,
                description=cmd.description,
                request_type=cmd.type,
                equipment=equipment,
                created_by_id=cmd.actor.id,
                scheduled_date=cmd.scheduled_date,
            )
            uow.requests.save(request)
            _append_log(uow, request, None, cmd.actor)
            result = _RequestView(uow).request(request)
            uow.commit()
            log.info(
                "request.created",
                request_id=str(request.id),
                equipment_id=str(equipment.id),
                team_id=str(request.team_id),
                type=request.type.value,
                actor_id=str(cmd.actor.id),
            )
            return result


@dataclass
class AssignRequestCommand:
    actor: Actor
    request_id: uuid.UUID
    technician_id: uuid.UUID


class AssignRequestUseCase:
    """
    Assign a technician of the request's team and move the request to
    IN_PROGRESS.  Re-assigning an IN_PROGRESS request is allowed and logged.
    """

    def execute(self, cmd: AssignRequestCommand, uow: AbstractUnitOfWork) -> MaintenanceRequestDTO:
        with uow:
            policy.require_assign_request(cmd.actor)
            request = _get_request_or_raise(uow, cmd.request_id)
            technician = _request_svc.check_assignee(
                request, uow.users.get(cmd.technician_id), cmd.technician_id
            )
            policy.require_modify_request(cmd.actor, request)

            old_status = _request_svc.assign(request, technician)
            uow.requests.save(request)
            _append_log(uow, request, old_status, cmd.actor)
            result = _RequestView(uow).request(request)
            uow.commit()
            log.info(
                "request.assigned",
                request_id=str(request.id),
                technician_id=str(technician.id),
                old_status=old_status.value,
                actor_id=str(cmd.actor.id),
            )
            return result


@dataclass
class UpdateRequestStatusCommand:
    actor: Actor
    request_id: uuid.UUID
    new_status: RequestStatus


class UpdateRequestStatusUseCase:
    """
    Move a request along the transition table.  Moving to SCRAP also scraps
    the equipment in the same transaction.
    """

    def execute(self, cmd: UpdateRequestStatusCommand, uow: AbstractUnitOfWork) -> MaintenanceRequestDTO:
        with uow:
            request = _get_request_or_raise(uow, cmd.request_id)
            _request_svc.ensure_transition(request, cmd.new_status)
            policy.require_update_status(cmd.actor, request, cmd.new_status)

            old_status = _request_svc.change_status(request, cmd.new_status)
            uow.requests.save(request)
            equipment_scrapped = False
            if cmd.new_status is RequestStatus.SCRAP:
                equipment_scrapped = _cascade_scrap(uow, request)
            _append_log(uow, request, old_status, cmd.actor)
            result = _RequestView(uow).request(request)
            uow.commit()
            log.info(
                "request.status_changed",
                request_id=str(request.id),
                old_status=old_status.value,
                new_status=request.status.value,
                equipment_scrapped=equipment_scrapped,
                actor_id=str(cmd.actor.id),
            )
            return result


@dataclass
class CompleteRequestCommand:
    actor: Actor
    request_id: uuid.UUID
    duration_hours: float


class CompleteRequestUseCase:
    def execute(self, cmd: CompleteRequestCommand, uow: AbstractUnitOfWork) -> MaintenanceRequestDTO:
        with uow:
            request = _get_request_or_raise(uow, cmd.request_id)
            _request_svc.ensure_completable(request)
            policy.require_update_status(cmd.actor, request, RequestStatus.REPAIRED)

            old_status = _request_svc.complete(request, cmd.duration_hours)
            uow.requests.save(request)
            _append_log(uow, request, old_status, cmd.actor)
            result = _RequestView(uow).request(request)
            uow.commit()
            log.info(
                "request.completed",
                request_id=str(request.id),
                duration_hours=request.duration_hours,
                actor_id=str(cmd.actor.id),
            )
            return result


@dataclass
class ScrapRequestCommand:
    actor: Actor
    request_id: uuid.UUID


class ScrapRequestUseCase:
    """
    Scrap a request together with its equipment.  Request, equipment and
    audit entry commit or roll back together.  Scrapping an already
    scrapped request changes nothing and writes no log entry.
    """

    def execute(self, cmd: ScrapRequestCommand, uow: AbstractUnitOfWork) -> MaintenanceRequestDTO:
        with uow:
            request = _get_request_or_raise(uow, cmd.request_id)
            policy.require_update_status(cmd.actor, request, RequestStatus.SCRAP)

            old_status = _request_svc.scrap(request)
            if old_status is None:
                return _RequestView(uow).request(request)

            uow.requests.save(request)
            equipment_scrapped = _cascade_scrap(uow, request)
            _append_log(uow, request, old_status, cmd.actor)
            result = _RequestView(uow).request(request)
            uow.commit()
            log.info(
                "request.scrapped",
                request_id=str(request.id),
                equipment_id=str(request.equipment_id),
                old_status=old_status.value,
                equipment_scrapped=equipment_scrapped,
                actor_id=str(cmd.actor.id),
            )
            return result


class GetRequestUseCase:
    def execute(
        self,
        actor: Actor,
        request_id: uuid.UUID,
        uow: AbstractUnitOfWork,
        include_logs: bool = False,
    ) -> MaintenanceRequestDTO:
        with uow:
            request = _get_request_or_raise(uow, request_id)
            policy.require_view_request(actor, request)
            return _RequestView(uow).request(request, include_logs=include_logs)


class ListRequestsUseCase:
    """
    Filtered, paginated request list, restricted to what the actor may see.
    Filtering for another team is refused rather than silently narrowed.
    """

    def execute(
        self,
        actor: Actor,
        filters: RequestFilter,
        uow: AbstractUnitOfWork,
        page: Optional[int] = None,
        limit: Optional[int] = None,
    ) -> RequestPageDTO:
        page, limit = _page_params(page, limit)
        with uow:
            scope = policy.request_list_scope(actor, filters.team_id)
            rows, total = uow.requests.list(filters, scope, page, limit)
            view = _RequestView(uow)
            return RequestPageDTO(
                items=[view.request(r) for r in rows],
                pagination=_pagination(page, limit, total),
            )


# ===========================================================================
# USE CASES — AUDIT LOG
# ===========================================================================

class GetRequestLogsUseCase:
    """Full history of one request, oldest entry first."""

    def execute(self, actor: Actor, request_id: uuid.UUID, uow: AbstractUnitOfWork) -> List[RequestLogDTO]:
        with uow:
            request = _get_request_or_raise(uow, request_id)
            policy.require_view_request(actor, request)
            view = _RequestView(uow)
            return [
                view.log_entry(e)
                for e in _audit_svc.history(uow.logs.list_for_request(request.id))
            ]


class ListRequestLogsUseCase:
    """Search the audit log across requests; newest entries first."""

    def execute(
        self,
        actor: Actor,
        filters: LogFilter,
        uow: AbstractUnitOfWork,
        page: Optional[int] = None,
        limit: Optional[int] = None,
    ) -> LogPageDTO:
        page, limit = _page_params(page, limit)
        with uow:
            scope = policy.request_list_scope(actor)
            rows, total = uow.logs.search(filters, scope, page, limit)
            view = _RequestView(uow)
            return LogPageDTO(
                items=[view.log_entry(e) for e in rows],
                pagination=_pagination(page, limit, total),
            )


# ===========================================================================
# USE CASES — TEAM MANAGEMENT
# ===========================================================================

@dataclass
class CreateTeamCommand:
    actor: Actor
    name: str


class CreateTeamUseCase:
    def execute(self, cmd: CreateTeamCommand, uow: AbstractUnitOfWork) -> TeamDTO:
        with uow:
            policy.require_manage_teams(cmd.actor)
            if uow.teams.get_by_name(cmd.name) is not None:
                raise ConflictError(f"A team named '{cmd.name}' already exists.", field="name")
            team = _team_svc.create_team(cmd.name)
            uow.teams.save(team)
            uow.commit()
            log.info("team.created", team_id=str(team.id), actor_id=str(cmd.actor.id))
            return _Assembler.team(team)


@dataclass
class RenameTeamCommand:
    actor: Actor
    team_id: uuid.UUID
    name: str


class RenameTeamUseCase:
    def execute(self, cmd: RenameTeamCommand, uow: AbstractUnitOfWork) -> TeamDTO:
        with uow:
            policy.require_manage_teams(cmd.actor)
            team = _get_team_or_raise(uow, cmd.team_id)
            existing = uow.teams.get_by_name(cmd.name)
            if existing is not None and existing.id != team.id:
                raise ConflictError(f"A team named '{cmd.name}' already exists.", field="name")
            team = _team_svc.rename_team(team, cmd.name)
            uow.teams.save(team)
            uow.commit()
            return _Assembler.team(team)


@dataclass
class DeleteTeamCommand:
    actor: Actor
    team_id: uuid.UUID


class DeleteTeamUseCase:
    def execute(self, cmd: DeleteTeamCommand, uow: AbstractUnitOfWork) -> None:
        with uow:
            policy.require_manage_teams(cmd.actor)
            team = _get_team_or_raise(uow, cmd.team_id)
            _team_svc.ensure_deletable(
                team,
                user_count=uow.users.count_for_team(team.id),
                equipment_count=uow.equipment.count_for_team(team.id),
                request_count=uow.requests.count_for_team(team.id),
            )
            uow.teams.delete(team)
            uow.commit()
            log.info("team.deleted", team_id=str(team.id), actor_id=str(cmd.actor.id))


class GetTeamUseCase:
    def execute(self, actor: Actor, team_id: uuid.UUID, uow: AbstractUnitOfWork) -> TeamDTO:
        with uow:
            team = _get_team_or_raise(uow, team_id)
            policy.require_view_team(actor, team.id)
            return _Assembler.team(team)


class ListTeamsUseCase:
    def execute(self, actor: Actor, uow: AbstractUnitOfWork) -> List[TeamDTO]:
        with uow:
            scope = policy.team_list_scope(actor, None, "list_teams")
            return [_Assembler.team(t) for t in uow.teams.list(scope)]


# ===========================================================================
# USE CASES — USER MANAGEMENT
# ===========================================================================

@dataclass
class CreateUserCommand:
    actor: Actor
    name: str
    email: str
    role: Role
    team_id: Optional[uuid.UUID] = None


class CreateUserUseCase:
    def execute(self, cmd: CreateUserCommand, uow: AbstractUnitOfWork) -> UserDTO:
        with uow:
            policy.require_manage_users(cmd.actor)
            if cmd.team_id is not None:
                _get_team_or_raise(uow, cmd.team_id)
            user = _user_svc.create_user(
                name=cmd.name,
                email=cmd.email,
                role=cmd.role,
                team_id=cmd.team_id,
            )
            if uow.users.get_by_email(user.email) is not None:
                raise ConflictError(f"A user with email '{user.email}' already exists.", field="email")
            uow.users.save(user)
            uow.commit()
            log.info("user.created", user_id=str(user.id), role=user.role.value, actor_id=str(cmd.actor.id))
            return _Assembler.user(user)


@dataclass
class UpdateUserCommand:
    actor: Actor
    user_id: uuid.UUID
    name: Optional[str] = None
    email: Optional[str] = None
    role: Optional[Role] = None
    team_id: Optional[uuid.UUID] = None
    clear_team: bool = False
    is_active: Optional[bool] = None


class UpdateUserUseCase:
    def execute(self, cmd: UpdateUserCommand, uow: AbstractUnitOfWork) -> UserDTO:
        with uow:
            policy.require_manage_users(cmd.actor)
            user = _get_user_or_raise(uow, cmd.user_id)
            if cmd.team_id is not None:
                _get_team_or_raise(uow, cmd.team_id)
            if cmd.email is not None:
                existing = uow.users.get_by_email(_user_svc.normalise_email(cmd.email))
                if existing is not None and existing.id != user.id:
                    raise ConflictError(f"A user with email '{cmd.email}' already exists.", field="email")
            _user_svc.ensure_reassignable(
                user,
                open_assignment_count=uow.requests.count_assigned_to(user.id, open_only=True),
                role=cmd.role,
                team_id=cmd.team_id,
                clear_team=cmd.clear_team,
            )
            user = _user_svc.update_user(
                user,
                name=cmd.name,
                email=cmd.email,
                role=cmd.role,
                team_id=cmd.team_id,
                clear_team=cmd.clear_team,
                is_active=cmd.is_active,
            )
            uow.users.save(user)
            uow.commit()
            log.info("user.updated", user_id=str(user.id), actor_id=str(cmd.actor.id))
            return _Assembler.user(user)


@dataclass
class DeleteUserCommand:
    actor: Actor
    user_id: uuid.UUID


class DeleteUserUseCase:
    """
    Users referenced by request assignments or by the audit log cannot be
    removed; deactivate them instead.
    """

    def execute(self, cmd: DeleteUserCommand, uow: AbstractUnitOfWork) -> None:
        with uow:
            policy.require_manage_users(cmd.actor)
            user = _get_user_or_raise(uow, cmd.user_id)
            if user.id == cmd.actor.id:
                raise ValidationError("You cannot delete your own account.", rule="cannot_delete_self")
            _user_svc.ensure_deletable(
                user,
                assigned_request_count=uow.requests.count_assigned_to(user.id),
                history_count=uow.logs.count_by_user(user.id),
            )
            uow.users.delete(user)
            uow.commit()
            log.info("user.deleted", user_id=str(user.id), actor_id=str(cmd.actor.id))


class GetUserUseCase:
    def execute(self, actor: Actor, user_id: uuid.UUID, uow: AbstractUnitOfWork) -> UserDTO:
        with uow:
            user = _get_user_or_raise(uow, user_id)
            policy.require_view_user(actor, user)
            return _Assembler.user(user)


class ListUsersUseCase:
    def execute(
        self,
        actor: Actor,
        uow: AbstractUnitOfWork,
        team_id: Optional[uuid.UUID] = None,
        role: Optional[Role] = None,
        is_active: Optional[bool] = None,
    ) -> List[UserDTO]:
        with uow:
            policy.require_list_users(actor)
            scope = policy.team_list_scope(actor, team_id, "list_users")
            users = uow.users.list(scope, team_id=team_id, role=role, is_active=is_active)
            return [_Assembler.user(u) for u in users]


# ===========================================================================
# USE CASES — EQUIPMENT REGISTER
# ===========================================================================

@dataclass
class CreateEquipmentCommand:
    actor: Actor
    name: str
    serial_number: str
    department: str
    location: str
    purchase_date: date
    team_id: uuid.UUID
    warranty_end: Optional[date] = None


class CreateEquipmentUseCase:
    def execute(self, cmd: CreateEquipmentCommand, uow: AbstractUnitOfWork) -> EquipmentDTO:
        with uow:
            policy.require_manage_equipment(cmd.actor, cmd.team_id)
            _get_team_or_raise(uow, cmd.team_id)
            if uow.equipment.get_by_serial(cmd.serial_number) is not None:
                raise ConflictError(
                    f"Equipment with serial number '{cmd.serial_number}' already exists.",
                    field="serial_number",
                )
            item = _equipment_svc.create_equipment(
                name=cmd.name,
                serial_number=cmd.serial_number,
                department=cmd.department,
                location=cmd.location,
                purchase_date=cmd.purchase_date,
                team_id=cmd.team_id,
                warranty_end=cmd.warranty_end,
            )
            uow.equipment.save(item)
            uow.commit()
            log.info("equipment.created", equipment_id=str(item.id), team_id=str(item.team_id))
            return _Assembler.equipment(item)


@dataclass
class UpdateEquipmentCommand:
    actor: Actor
    equipment_id: uuid.UUID
    name: Optional[str] = None
    serial_number: Optional[str] = None
    department: Optional[str] = None
    location: Optional[str] = None
    purchase_date: Optional[date] = None
    warranty_end: Optional[date] = None
    team_id: Optional[uuid.UUID] = None


class UpdateEquipmentUseCase:
    def execute(self, cmd: UpdateEquipmentCommand, uow: AbstractUnitOfWork) -> EquipmentDTO:
        with uow:
            item = _get_equipment_or_raise(uow, cmd.equipment_id)
            policy.require_manage_equipment(cmd.actor, item.team_id)
            if cmd.team_id is not None and cmd.team_id != item.team_id:
                policy.require_manage_equipment(cmd.actor, cmd.team_id)
                _get_team_or_raise(uow, cmd.team_id)
            if cmd.serial_number is not None:
                existing = uow.equipment.get_by_serial(cmd.serial_number)
                if existing is not None and existing.id != item.id:
                    raise ConflictError(
                        f"Equipment with serial number '{cmd.serial_number}' already exists.",
                        field="serial_number",
                    )
            item = _equipment_svc.update_equipment(
                item,
                name=cmd.name,
                serial_number=cmd.serial_number,
                department=cmd.department,
                location=cmd.location,
                purchase_date=cmd.purchase_date,
                warranty_end=cmd.warranty_end,
                team_id=cmd.team_id,
            )
            uow.equipment.save(item)
            uow.commit()
            return _Assembler.equipment(item)


@dataclass
class ScrapEquipmentCommand:
    actor: Actor
    equipment_id: uuid.UUID


class ScrapEquipmentUseCase:
    def execute(self, cmd: ScrapEquipmentCommand, uow: AbstractUnitOfWork) -> EquipmentDTO:
        with uow:
            item = _get_equipment_or_raise(uow, cmd.equipment_id)
            policy.require_manage_equipment(cmd.actor, item.team_id)
            item = _equipment_svc.scrap_equipment(item)
            uow.equipment.save(item)
            uow.commit()
            log.info("equipment.scrapped", equipment_id=str(item.id), actor_id=str(cmd.actor.id))
            return _Assembler.equipment(item)


@dataclass
class DeleteEquipmentCommand:
    actor: Actor
    equipment_id: uuid.UUID


class DeleteEquipmentUseCase:
    def execute(self, cmd: DeleteEquipmentCommand, uow: AbstractUnitOfWork) -> None:
        with uow:
            item = _get_equipment_or_raise(uow, cmd.equipment_id)
            policy.require_manage_equipment(cmd.actor, item.team_id)
            _equipment_svc.ensure_deletable(item, uow.requests.count_for_equipment(item.id))
            uow.equipment.delete(item)
            uow.commit()
            log.info("equipment.deleted", equipment_id=str(item.id), actor_id=str(cmd.actor.id))


class GetEquipmentUseCase:
    def execute(self, actor: Actor, equipment_id: uuid.UUID, uow: AbstractUnitOfWork) -> EquipmentDTO:
        with uow:
            item = _get_equipment_or_raise(uow, equipment_id)
            policy.require_view_equipment(actor, item)
            return _Assembler.equipment(item)


class ListEquipmentUseCase:
    def execute(self, actor: Actor, filters: EquipmentFilter, uow: AbstractUnitOfWork) -> List[EquipmentDTO]:
        with uow:
            scope = policy.team_list_scope(actor, filters.team_id, "list_equipment")
            return [_Assembler.equipment(e) for e in uow.equipment.list(filters, scope)]


# ===========================================================================
# USE CASES — IDENTITY
# ===========================================================================

class ResolveActorUseCase:
    """Turn an authenticated user id into the Actor passed to every use case."""

    def execute(self, user_id: uuid.UUID, uow: AbstractUnitOfWork) -> Actor:
        with uow:
            user = uow.users.get(user_id)
            if user is None or not user.is_active:
                raise PermissionDenied("authenticate", DenialReason.NOT_AUTHENTICATED)
            return Actor.from_user(user)


@dataclass
class SeedAdminCommand:
    user_id: uuid.UUID
    name: str
    email: str


class SeedAdminUseCase:
    """
    Create the first administrator if it does not exist yet, so that the
    system can be bootstrapped.  Returns None when nothing was created.
    """

    def execute(self, cmd: SeedAdminCommand, uow: AbstractUnitOfWork) -> Optional[UserDTO]:
        with uow:
            email = _user_svc.normalise_email(cmd.email)
            if uow.users.get(cmd.user_id) is not None or uow.users.get_by_email(email) is not None:
                return None
            admin = _user_svc.create_user(name=cmd.name, email=email, role=Role.ADMIN)
            admin.id = cmd.user_id
            uow.users.save(admin)
            uow.commit()
            log.info("user.bootstrap_admin_created", user_id=str(admin.id))
            return _Assembler.user(admin)
