"""
model.py

Domain models for the Maintenance Tracker.

Entities
--------
- Team
- User
- Equipment
- MaintenanceRequest
- RequestLog

Value objects
-------------
- Actor  – the resolved identity (id, role, team) invoking an operation

All models use Python dataclasses for clean, framework-agnostic definitions;
the persistence layer maps them imperatively (see orm.py).
UUID primary keys are used throughout for portability.
Timestamps are always stored in UTC.

The tagged error hierarchy raised by the domain and application layers also
lives here so that every layer shares one vocabulary of failure kinds.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from enum import Enum
from typing import Any, Dict, FrozenSet, Optional


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------


class Role(str, Enum):
    """
    System-wide role of a user.

    ADMIN       – Manages users, teams and all equipment; unrestricted.
    MANAGER     – Creates and assigns requests for their own team.
    TECHNICIAN  – Works requests assigned to them.
    """
    ADMIN = "ADMIN"
    MANAGER = "MANAGER"
    TECHNICIAN = "TECHNICIAN"


class RequestType(str, Enum):
    """Kind of maintenance work."""
    CORRECTIVE = "CORRECTIVE"   # Repair after a breakdown
    PREVENTIVE = "PREVENTIVE"   # Planned, must be scheduled


class RequestStatus(str, Enum):
    """Lifecycle status of a maintenance request."""
    NEW = "NEW"
    IN_PROGRESS = "IN_PROGRESS"
    REPAIRED = "REPAIRED"
    SCRAP = "SCRAP"


class DenialReason(str, Enum):
    """Why an authorization predicate refused an actor."""
    NOT_AUTHENTICATED = "NOT_AUTHENTICATED"
    RESOURCE_MISSING = "RESOURCE_MISSING"
    ROLE_NOT_PERMITTED = "ROLE_NOT_PERMITTED"
    TEAM_MISMATCH = "TEAM_MISMATCH"
    NOT_ASSIGNEE = "NOT_ASSIGNEE"
    STATUS_NOT_PERMITTED = "STATUS_NOT_PERMITTED"


# ---------------------------------------------------------------------------
# Request state machine
# ---------------------------------------------------------------------------

REQUEST_TRANSITIONS: Dict[RequestStatus, FrozenSet[RequestStatus]] = {
    RequestStatus.NEW: frozenset({RequestStatus.IN_PROGRESS, RequestStatus.SCRAP}),
    RequestStatus.IN_PROGRESS: frozenset({RequestStatus.REPAIRED, RequestStatus.SCRAP}),
    RequestStatus.REPAIRED: frozenset(),
    RequestStatus.SCRAP: frozenset(),
}

TERMINAL_STATUSES: FrozenSet[RequestStatus] = frozenset(
    s for s, targets in REQUEST_TRANSITIONS.items() if not targets
)


def is_transition_allowed(from_status: RequestStatus, to_status: RequestStatus) -> bool:
    return to_status in REQUEST_TRANSITIONS.get(from_status, frozenset())


# ---------------------------------------------------------------------------
# Organisation Entities
# ---------------------------------------------------------------------------


@dataclass
class Team:
    """
    A named grouping of users and equipment.

    A team cannot be deleted while it still owns users, equipment or
    maintenance requests (enforced at the service layer).
    """
    id: uuid.UUID = field(default_factory=uuid.uuid4)
    name: str = ""
    created_at: datetime = field(default_factory=_utcnow)
    updated_at: datetime = field(default_factory=_utcnow)


@dataclass
class User:
    """
    A person who uses the system.

    Technicians and managers normally belong to a team; the team reference
    is optional so that a user can exist before being placed in one.
    """
    id: uuid.UUID = field(default_factory=uuid.uuid4)
    name: str = ""
    email: str = ""
    role: Role = Role.TECHNICIAN
    team_id: Optional[uuid.UUID] = None     # FK → Team.id
    is_active: bool = True
    created_at: datetime = field(default_factory=_utcnow)
    updated_at: datetime = field(default_factory=_utcnow)


# ---------------------------------------------------------------------------
# Asset Entities
# ---------------------------------------------------------------------------


@dataclass
class Equipment:
    """
    A physical asset maintained by a team.

    `is_scrapped` is one-way: once true the equipment no longer accepts new
    maintenance requests or field updates.
    """
    id: uuid.UUID = field(default_factory=uuid.uuid4)
    name: str = ""
    serial_number: str = ""                 # Unique across the system
    department: str = ""
    location: str = ""
    purchase_date: Optional[date] = None
    warranty_end: Optional[date] = None
    team_id: uuid.UUID = field(default_factory=uuid.uuid4)     # FK → Team.id
    is_scrapped: bool = False
    created_at: datetime = field(default_factory=_utcnow)
    updated_at: datetime = field(default_factory=_utcnow)


# ---------------------------------------------------------------------------
# Workflow Entities
# ---------------------------------------------------------------------------


@dataclass
class MaintenanceRequest:
    """
    The central workflow entity.

    `team_id` is copied from the equipment at creation and never changes
    afterwards. The store keeps an additional version counter on this row
    for optimistic concurrency; it is not part of the domain state.
    """
    id: uuid.UUID = field(default_factory=uuid.uuid4)
    subject: str = ""
    description: str = ""
    type: RequestType = RequestType.CORRECTIVE
    status: RequestStatus = RequestStatus.NEW

    equipment_id: uuid.UUID = field(default_factory=uuid.uuid4)   # FK → Equipment.id
    team_id: uuid.UUID = field(default_factory=uuid.uuid4)        # FK → Team.id
    assigned_to_id: Optional[uuid.UUID] = None                    # FK → User.id (TECHNICIAN)

    scheduled_date: Optional[datetime] = None
    duration_hours: Optional[float] = None   # Set on completion

    created_by_id: uuid.UUID = field(default_factory=uuid.uuid4)  # FK → User.id
    created_at: datetime = field(default_factory=_utcnow)
    updated_at: datetime = field(default_factory=_utcnow)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES


@dataclass
class RequestLog:
    """
    Immutable record of one status change of a maintenance request.

    Exactly one entry is written per successful state-changing operation,
    including creation (old_status is None only for that first entry).
    Entries are never updated or deleted.
    """
    id: uuid.UUID = field(default_factory=uuid.uuid4)
    request_id: uuid.UUID = field(default_factory=uuid.uuid4)   # FK → MaintenanceRequest.id
    sequence_number: int = 0                                    # Monotonically increasing per request
    old_status: Optional[RequestStatus] = None
    new_status: RequestStatus = RequestStatus.NEW
    changed_by_id: uuid.UUID = field(default_factory=uuid.uuid4)  # FK → User.id
    changed_at: datetime = field(default_factory=_utcnow)


# ---------------------------------------------------------------------------
# Identity
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Actor:
    """The authenticated identity on whose behalf an operation runs."""
    id: uuid.UUID
    role: Role
    team_id: Optional[uuid.UUID] = None

    @classmethod
    def from_user(cls, user: User) -> "Actor":
        return cls(id=user.id, role=user.role, team_id=user.team_id)


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------


def _plain(value: Any) -> Any:
    """Reduce ids and enum members to JSON-friendly scalars."""
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, uuid.UUID):
        return str(value)
    return value


class DomainError(Exception):
    """
    Base class of every tagged failure.

    `code` is a stable identifier callers can branch on; `context` carries
    the structured details of the failure (ids, statuses, rule names).
    """
    code = "DOMAIN_ERROR"

    def __init__(self, message: str, **context: Any) -> None:
        super().__init__(message)
        self.message = message
        self.context: Dict[str, Any] = {k: _plain(v) for k, v in context.items()}


class NotFoundError(DomainError):
    """Raised when a requested entity does not exist."""
    code = "NOT_FOUND"

    def __init__(self, entity: str, entity_id: Any) -> None:
        super().__init__(f"{entity} {entity_id} not found.", entity=entity, id=entity_id)
        self.entity = entity
        self.entity_id = entity_id


class ValidationError(DomainError, ValueError):
    """Raised when input violates a business rule; `rule` names the rule."""
    code = "VALIDATION_ERROR"

    def __init__(self, message: str, rule: str, **context: Any) -> None:
        super().__init__(message, rule=rule, **context)
        self.rule = rule


class PermissionDenied(DomainError):
    """Raised when an authorization predicate refuses the actor."""
    code = "PERMISSION_DENIED"

    def __init__(self, predicate: str, reason: DenialReason) -> None:
        super().__init__(
            f"Permission denied for {predicate}: {reason.value}.",
            predicate=predicate,
            reason=reason,
        )
        self.predicate = predicate
        self.reason = reason


class InvalidStatusTransition(DomainError):
    """Raised when a status change is not in the transition table."""
    code = "INVALID_STATUS_TRANSITION"

    def __init__(self, from_status: RequestStatus, to_status: RequestStatus) -> None:
        super().__init__(
            f"Invalid status transition from {from_status.value} to {to_status.value}.",
            from_status=from_status,
            to_status=to_status,
        )
        self.from_status = from_status
        self.to_status = to_status


class TeamMismatch(DomainError):
    """Raised when a technician from another team is assigned to a request."""
    code = "TEAM_MISMATCH"

    def __init__(
        self,
        request_team_id: uuid.UUID,
        technician_team_id: Optional[uuid.UUID],
    ) -> None:
        super().__init__(
            "Technician must belong to the same team as the equipment.",
            request_team_id=request_team_id,
            technician_team_id=technician_team_id,
        )


class EquipmentScrapped(DomainError):
    """Raised when scrapped equipment is used for a new request or modified."""
    code = "EQUIPMENT_SCRAPPED"

    def __init__(self, equipment_id: uuid.UUID) -> None:
        super().__init__(f"Equipment {equipment_id} is scrapped.", equipment_id=equipment_id)
        self.equipment_id = equipment_id


class ConflictError(DomainError):
    """Raised when a unique field is already taken."""
    code = "CONFLICT"


class ConcurrencyError(DomainError):
    """Raised when another transaction changed the same row first."""
    code = "CONCURRENT_UPDATE"

    def __init__(self, entity: str, detail: str = "") -> None:
        super().__init__(
            f"{entity} was modified by another transaction; reload and retry.",
            entity=entity,
            detail=detail,
        )
