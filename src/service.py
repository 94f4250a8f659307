"""
service.py

Service layer for the Maintenance Tracker.

Responsibilities
----------------
Each service class encapsulates the business rules for its domain.
Services receive and return domain model instances (from model.py).
No persistence is handled here: callers load entities through a repository,
hand them to a service, and store whatever the service returns.

Services
--------
- TeamService         – Team naming and deletion guard
- UserService         – User registration, profile updates, deletion guard
- EquipmentService    – Equipment Guard (request eligibility, scrap cascade)
                        and equipment maintenance rules
- RequestService      – Request Lifecycle Engine: scheduling rule, transition
                        table, assignment, completion, scrap
- AuditService        – Builds the immutable RequestLog entries

Design notes
------------
- Authorization is NOT checked here; see policy.py.
- UTC datetimes are used throughout; naive values are read as UTC.
- Rule violations raise the tagged errors from model.py
  (ValidationError names the violated rule).
- Methods that would normally persist data return the mutated object(s)
  so the caller can hand them to a repository.
"""

from __future__ import annotations

import math
import uuid
from datetime import date, datetime, timezone
from typing import List, Optional

from model import (
    Equipment,
    EquipmentScrapped,
    InvalidStatusTransition,
    MaintenanceRequest,
    NotFoundError,
    RequestLog,
    RequestStatus,
    RequestType,
    Role,
    Team,
    TeamMismatch,
    User,
    ValidationError,
    is_transition_allowed,
)


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------

def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(dt: datetime) -> datetime:
    """Return `dt` as an aware UTC datetime (naive input is taken to be UTC)."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def add_years(d: date, years: int) -> date:
    """Same calendar day `years` later; 29 February falls back to the 28th."""
    try:
        return d.replace(year=d.year + years)
    except ValueError:
        return d.replace(year=d.year + years, day=28)


def _require_text(value: str, field_name: str) -> str:
    value = (value or "").strip()
    if not value:
        raise ValidationError(f"{field_name} must not be empty.", rule=f"{field_name}_required")
    return value


# ---------------------------------------------------------------------------
# TeamService
# ---------------------------------------------------------------------------

class TeamService:
    """
    Manages team naming and the rule that only empty teams may be deleted.
    """

    def create_team(self, name: str) -> Team:
        """Create and return a new Team (unsaved)."""
        now = _utcnow()
        return Team(name=_require_text(name, "name"), created_at=now, updated_at=now)

    def rename_team(self, team: Team, name: str) -> Team:
        team.name = _require_text(name, "name")
        team.updated_at = _utcnow()
        return team

    def ensure_deletable(
        self,
        team: Team,
        user_count: int,
        equipment_count: int,
        request_count: int,
    ) -> Team:
        """
        A team may only be deleted once it owns no users, no equipment and
        no maintenance requests.
        """
        if user_count or equipment_count or request_count:
            raise ValidationError(
                f"Cannot delete team '{team.name}': it still has {user_count} user(s), "
                f"{equipment_count} equipment item(s) and {request_count} request(s).",
                rule="team_not_empty",
                users=user_count,
                equipment=equipment_count,
                requests=request_count,
            )
        return team


# ---------------------------------------------------------------------------
# UserService
# ---------------------------------------------------------------------------

class UserService:
    """
    Manages user registration and profile updates.
    """

    def create_user(
        self,
        name: str,
        email: str,
        role: Role,
        team_id: Optional[uuid.UUID] = None,
    ) -> User:
        """Create and return a new User (unsaved)."""
        now = _utcnow()
        return User(
            name=_require_text(name, "name"),
            email=self.normalise_email(email),
            role=role,
            team_id=team_id,
            is_active=True,
            created_at=now,
            updated_at=now,
        )

    def update_user(
        self,
        user: User,
        name: Optional[str] = None,
        email: Optional[str] = None,
        role: Optional[Role] = None,
        team_id: Optional[uuid.UUID] = None,
        clear_team: bool = False,
        is_active: Optional[bool] = None,
    ) -> User:
        """Apply field-level updates to a user."""
        if name is not None:
            user.name = _require_text(name, "name")
        if email is not None:
            user.email = self.normalise_email(email)
        if role is not None:
            user.role = role
        if clear_team:
            user.team_id = None
        elif team_id is not None:
            user.team_id = team_id
        if is_active is not None:
            user.is_active = is_active
        user.updated_at = _utcnow()
        return user

    def ensure_reassignable(
        self,
        user: User,
        open_assignment_count: int,
        role: Optional[Role] = None,
        team_id: Optional[uuid.UUID] = None,
        clear_team: bool = False,
    ) -> User:
        """
        An assignee of open requests keeps their role and team until those
        requests are closed or handed to another technician.
        """
        changes_role = role is not None and role is not user.role
        changes_team = (clear_team and user.team_id is not None) or (
            team_id is not None and team_id != user.team_id
        )
        if open_assignment_count and (changes_role or changes_team):
            raise ValidationError(
                f"Cannot change the role or team of '{user.name}': {open_assignment_count} open "
                "request(s) are assigned to them. Reassign them first.",
                rule="user_has_open_assignments",
                open_requests=open_assignment_count,
            )
        return user

    def ensure_deletable(self, user: User, assigned_request_count: int, history_count: int = 0) -> User:
        """
        Users still referenced by assignments or by the audit log stay;
        deactivate them instead.
        """
        if assigned_request_count:
            raise ValidationError(
                f"Cannot delete user '{user.name}': {assigned_request_count} request(s) "
                "are assigned to them.",
                rule="user_has_assigned_requests",
                assigned_requests=assigned_request_count,
            )
        if history_count:
            raise ValidationError(
                f"Cannot delete user '{user.name}': they appear in {history_count} "
                "request log entries. Deactivate the user instead.",
                rule="user_has_history",
                log_entries=history_count,
            )
        return user

    @staticmethod
    def normalise_email(email: str) -> str:
        email = (email or "").strip().lower()
        if "@" not in email:
            raise ValidationError(
                f"'{email}' does not appear to be a valid email address.", rule="email_format"
            )
        return email


# ---------------------------------------------------------------------------
# EquipmentService
# ---------------------------------------------------------------------------

class EquipmentService:
    """
    The Equipment Guard plus the maintenance rules of the equipment register.

    Scrapping is one-way.  Scrapped equipment accepts no new requests and no
    field updates.
    """

    # --- Guard --------------------------------------------------------------

    def assert_eligible_for_request(
        self,
        equipment: Optional[Equipment],
        equipment_id: uuid.UUID,
    ) -> Equipment:
        """Fail unless the equipment exists and is not scrapped."""
        if equipment is None:
            raise NotFoundError("Equipment", equipment_id)
        if equipment.is_scrapped:
            raise EquipmentScrapped(equipment.id)
        return equipment

    def cascade_scrap(self, equipment: Equipment) -> bool:
        """
        Mark equipment scrapped as a side effect of scrapping a request.
        Never raises; returns False when it was already scrapped.
        """
        if equipment.is_scrapped:
            return False
        equipment.is_scrapped = True
        equipment.updated_at = _utcnow()
        return True

    # --- Register -----------------------------------------------------------

    def create_equipment(
        self,
        name: str,
        serial_number: str,
        department: str,
        location: str,
        purchase_date: date,
        team_id: uuid.UUID,
        warranty_end: Optional[date] = None,
    ) -> Equipment:
        """Create and return a new Equipment item (unsaved)."""
        if warranty_end is not None and warranty_end < purchase_date:
            raise ValidationError(
                "warranty_end must not be before purchase_date.", rule="warranty_before_purchase"
            )
        now = _utcnow()
        return Equipment(
            name=_require_text(name, "name"),
            serial_number=_require_text(serial_number, "serial_number"),
            department=department.strip(),
            location=location.strip(),
            purchase_date=purchase_date,
            warranty_end=warranty_end,
            team_id=team_id,
            is_scrapped=False,
            created_at=now,
            updated_at=now,
        )

    def update_equipment(
        self,
        equipment: Equipment,
        name: Optional[str] = None,
        serial_number: Optional[str] = None,
        department: Optional[str] = None,
        location: Optional[str] = None,
        purchase_date: Optional[date] = None,
        warranty_end: Optional[date] = None,
        team_id: Optional[uuid.UUID] = None,
    ) -> Equipment:
        """Apply field-level updates; scrapped equipment is immutable."""
        if equipment.is_scrapped:
            raise EquipmentScrapped(equipment.id)
        if name is not None:
            equipment.name = _require_text(name, "name")
        if serial_number is not None:
            equipment.serial_number = _require_text(serial_number, "serial_number")
        if department is not None:
            equipment.department = department.strip()
        if location is not None:
            equipment.location = location.strip()
        if purchase_date is not None:
            equipment.purchase_date = purchase_date
        if warranty_end is not None:
            equipment.warranty_end = warranty_end
        if team_id is not None:
            equipment.team_id = team_id
        if (
            equipment.warranty_end is not None
            and equipment.purchase_date is not None
            and equipment.warranty_end < equipment.purchase_date
        ):
            raise ValidationError(
                "warranty_end must not be before purchase_date.", rule="warranty_before_purchase"
            )
        equipment.updated_at = _utcnow()
        return equipment

    def scrap_equipment(self, equipment: Equipment) -> Equipment:
        """Explicit scrap from the equipment register; refuses a second scrap."""
        if equipment.is_scrapped:
            raise ValidationError(
                f"Equipment '{equipment.name}' is already scrapped.", rule="already_scrapped"
            )
        self.cascade_scrap(equipment)
        return equipment

    def ensure_deletable(self, equipment: Equipment, request_count: int) -> Equipment:
        if request_count:
            raise ValidationError(
                f"Cannot delete equipment '{equipment.name}': it has {request_count} "
                "maintenance request(s).",
                rule="equipment_has_requests",
                requests=request_count,
            )
        return equipment


# ---------------------------------------------------------------------------
# RequestService
# ---------------------------------------------------------------------------

class RequestService:
    """
    The Request Lifecycle Engine.

    States: NEW → IN_PROGRESS → {REPAIRED, SCRAP}, plus NEW → SCRAP.
    REPAIRED and SCRAP are terminal.

    Scheduling rule
    ---------------
    PREVENTIVE requests must be scheduled between the start of today (UTC)
    and the same calendar day `preventive_horizon_years` ahead.
    CORRECTIVE requests may omit the date but must not be scheduled later
    than now.
    """

    def __init__(self, preventive_horizon_years: int = 2):
        self.preventive_horizon_years = preventive_horizon_years

    # --- Validation ---------------------------------------------------------

    def validate_schedule(
        self,
        request_type: RequestType,
        scheduled_date: Optional[datetime],
        now: Optional[datetime] = None,
    ) -> Optional[datetime]:
        """Return the schedule normalised to UTC, or raise ValidationError."""
        now = as_utc(now) if now else _utcnow()

        if scheduled_date is None:
            if request_type is RequestType.PREVENTIVE:
                raise ValidationError(
                    "Scheduled date is required for preventive maintenance requests.",
                    rule="preventive_requires_schedule",
                )
            return None

        scheduled = as_utc(scheduled_date)
        if request_type is RequestType.PREVENTIVE:
            start_of_today = now.replace(hour=0, minute=0, second=0, microsecond=0)
            if scheduled < start_of_today:
                raise ValidationError(
                    "Scheduled date cannot be in the past.", rule="schedule_in_past"
                )
            limit = add_years(now.date(), self.preventive_horizon_years)
            if scheduled.date() > limit:
                raise ValidationError(
                    f"Scheduled date cannot be more than {self.preventive_horizon_years} "
                    "years in the future.",
                    rule="schedule_too_far",
                    latest=limit.isoformat(),
                )
        elif scheduled > now:
            raise ValidationError(
                "Corrective maintenance cannot be scheduled for future dates.",
                rule="corrective_future_schedule",
            )
        return scheduled

    def ensure_transition(self, request: MaintenanceRequest, new_status: RequestStatus) -> None:
        if not is_transition_allowed(request.status, new_status):
            raise InvalidStatusTransition(request.status, new_status)

    # --- Creation -----------------------------------------------------------

    def create_request(
        self,
        subject: str,
        description: str,
        request_type: RequestType,
        equipment: Equipment,
        created_by_id: uuid.UUID,
        scheduled_date: Optional[datetime] = None,
    ) -> MaintenanceRequest:
        """
        Create and return a NEW request (unsaved).  The owning team is taken
        from the equipment and is never changed afterwards.
        """
        subject = _require_text(subject, "subject")
        scheduled = self.validate_schedule(request_type, scheduled_date)
        now = _utcnow()
        return MaintenanceRequest(
            subject=subject,
            description=(description or "").strip(),
            type=request_type,
            status=RequestStatus.NEW,
            equipment_id=equipment.id,
            team_id=equipment.team_id,
            assigned_to_id=None,
            scheduled_date=scheduled,
            created_by_id=created_by_id,
            created_at=now,
            updated_at=now,
        )

    # --- Assignment ---------------------------------------------------------

    def check_assignee(
        self,
        request: MaintenanceRequest,
        technician: Optional[User],
        technician_id: uuid.UUID,
    ) -> User:
        """The assignee must exist, be a technician, and share the request's team."""
        if technician is None:
            raise NotFoundError("User", technician_id)
        if technician.role is not Role.TECHNICIAN:
            raise ValidationError(
                "User must be a technician to be assigned to maintenance requests.",
                rule="assignee_not_technician",
                user_id=technician.id,
                role=technician.role,
            )
        if technician.team_id != request.team_id:
            raise TeamMismatch(request.team_id, technician.team_id)
        return technician

    def assign(self, request: MaintenanceRequest, technician: User) -> RequestStatus:
        """
        Assign the technician and move the request to IN_PROGRESS.

        From NEW this is an ordinary transition; from IN_PROGRESS it is a
        re-assignment.  Any other status is refused.  Returns the prior status.
        """
        if request.status is not RequestStatus.IN_PROGRESS:
            self.ensure_transition(request, RequestStatus.IN_PROGRESS)
        old_status = request.status
        request.assigned_to_id = technician.id
        request.status = RequestStatus.IN_PROGRESS
        request.updated_at = _utcnow()
        return old_status

    # --- Status changes -----------------------------------------------------

    def change_status(self, request: MaintenanceRequest, new_status: RequestStatus) -> RequestStatus:
        """Apply a transition from the table.  Returns the prior status."""
        self.ensure_transition(request, new_status)
        old_status = request.status
        request.status = new_status
        request.updated_at = _utcnow()
        return old_status

    def ensure_completable(self, request: MaintenanceRequest) -> None:
        if request.status is not RequestStatus.IN_PROGRESS:
            raise InvalidStatusTransition(request.status, RequestStatus.REPAIRED)

    def complete(self, request: MaintenanceRequest, duration_hours: float) -> RequestStatus:
        """Mark an IN_PROGRESS request REPAIRED and record the hours spent."""
        self.ensure_completable(request)
        if duration_hours is None or not math.isfinite(duration_hours) or duration_hours <= 0:
            raise ValidationError(
                "Duration must be greater than zero.",
                rule="duration_must_be_positive",
                duration_hours=duration_hours,
            )
        old_status = self.change_status(request, RequestStatus.REPAIRED)
        request.duration_hours = float(duration_hours)
        return old_status

    def scrap(self, request: MaintenanceRequest) -> Optional[RequestStatus]:
        """
        Move the request to SCRAP.  Returns the prior status, or None when the
        request was already scrapped (nothing changed, nothing to log).
        """
        if request.status is RequestStatus.SCRAP:
            return None
        return self.change_status(request, RequestStatus.SCRAP)

    def is_overdue(self, request: MaintenanceRequest, now: Optional[datetime] = None) -> bool:
        if request.scheduled_date is None or request.is_terminal:
            return False
        return as_utc(request.scheduled_date) < (as_utc(now) if now else _utcnow())


# ---------------------------------------------------------------------------
# AuditService
# ---------------------------------------------------------------------------

class AuditService:
    """
    Builds RequestLog entries.  Entries are immutable once written; the
    caller stores them in the same unit of work as the change they record.
    """

    def record_transition(
        self,
        request_id: uuid.UUID,
        old_status: Optional[RequestStatus],
        new_status: RequestStatus,
        changed_by_id: uuid.UUID,
        existing_entries: List[RequestLog],
    ) -> RequestLog:
        """
        Return a new RequestLog for one status change.
        sequence_number is auto-incremented per request.
        """
        next_seq = max((e.sequence_number for e in existing_entries), default=0) + 1
        return RequestLog(
            request_id=request_id,
            sequence_number=next_seq,
            old_status=old_status,
            new_status=new_status,
            changed_by_id=changed_by_id,
            changed_at=_utcnow(),
        )

    def history(self, entries: List[RequestLog]) -> List[RequestLog]:
        """Return entries oldest first."""
        return sorted(entries, key=lambda e: e.sequence_number)
