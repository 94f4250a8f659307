import uuid
from datetime import date, datetime, timedelta, timezone

import pytest

from model import (
    REQUEST_TRANSITIONS,
    TERMINAL_STATUSES,
    Equipment,
    EquipmentScrapped,
    InvalidStatusTransition,
    MaintenanceRequest,
    NotFoundError,
    RequestStatus,
    RequestType,
    Role,
    Team,
    TeamMismatch,
    User,
    ValidationError,
    is_transition_allowed,
)
from service import (
    AuditService,
    EquipmentService,
    RequestService,
    TeamService,
    UserService,
    add_years,
)

NOW = datetime(2025, 3, 10, 15, 30, tzinfo=timezone.utc)


@pytest.fixture
def svc():
    return RequestService(preventive_horizon_years=2)


def _rule(exc_info):
    return exc_info.value.rule


# ---------------------------------------------------------------------------
# Transition table
# ---------------------------------------------------------------------------

class TestTransitions:

    def test_terminal_statuses(self):
        assert TERMINAL_STATUSES == {RequestStatus.REPAIRED, RequestStatus.SCRAP}

    @pytest.mark.parametrize("source", list(RequestStatus))
    @pytest.mark.parametrize("target", list(RequestStatus))
    def test_change_status_follows_table(self, svc, source, target):
        request = MaintenanceRequest(status=source)
        if target in REQUEST_TRANSITIONS[source]:
            assert svc.change_status(request, target) is source
            assert request.status is target
        else:
            with pytest.raises(InvalidStatusTransition):
                svc.change_status(request, target)
            assert request.status is source

    def test_self_transitions_are_not_allowed(self):
        assert not any(is_transition_allowed(s, s) for s in RequestStatus)


# ---------------------------------------------------------------------------
# Scheduling rule
# ---------------------------------------------------------------------------

class TestScheduling:

    def test_preventive_requires_date(self, svc):
        with pytest.raises(ValidationError) as exc_info:
            svc.validate_schedule(RequestType.PREVENTIVE, None, now=NOW)
        assert _rule(exc_info) == "preventive_requires_schedule"

    def test_preventive_start_of_today_is_accepted(self, svc):
        start = NOW.replace(hour=0, minute=0)
        assert svc.validate_schedule(RequestType.PREVENTIVE, start, now=NOW) == start

    def test_preventive_yesterday_is_rejected(self, svc):
        with pytest.raises(ValidationError) as exc_info:
            svc.validate_schedule(RequestType.PREVENTIVE, datetime(2025, 3, 9, 23, 59, tzinfo=timezone.utc), now=NOW)
        assert _rule(exc_info) == "schedule_in_past"

    def test_preventive_upper_bound_is_inclusive_by_day(self, svc):
        last_day = datetime(2027, 3, 10, 23, 0, tzinfo=timezone.utc)
        assert svc.validate_schedule(RequestType.PREVENTIVE, last_day, now=NOW) == last_day
        with pytest.raises(ValidationError) as exc_info:
            svc.validate_schedule(RequestType.PREVENTIVE, last_day + timedelta(hours=1), now=NOW)
        assert _rule(exc_info) == "schedule_too_far"

    def test_naive_schedule_is_read_as_utc(self, svc):
        result = svc.validate_schedule(RequestType.PREVENTIVE, datetime(2025, 4, 1, 8, 0), now=NOW)
        assert result.tzinfo is not None
        assert result == datetime(2025, 4, 1, 8, 0, tzinfo=timezone.utc)

    def test_corrective_may_omit_date(self, svc):
        assert svc.validate_schedule(RequestType.CORRECTIVE, None, now=NOW) is None

    def test_corrective_past_is_accepted_future_is_rejected(self, svc):
        assert svc.validate_schedule(RequestType.CORRECTIVE, NOW - timedelta(days=3), now=NOW)
        with pytest.raises(ValidationError) as exc_info:
            svc.validate_schedule(RequestType.CORRECTIVE, NOW + timedelta(minutes=1), now=NOW)
        assert _rule(exc_info) == "corrective_future_schedule"

    def test_horizon_is_configurable(self):
        one_year = RequestService(preventive_horizon_years=1)
        with pytest.raises(ValidationError):
            one_year.validate_schedule(RequestType.PREVENTIVE, datetime(2026, 6, 1, tzinfo=timezone.utc), now=NOW)

    def test_add_years_handles_leap_day(self):
        assert add_years(date(2024, 2, 29), 2) == date(2026, 2, 28)
        assert add_years(date(2024, 2, 29), 4) == date(2028, 2, 29)


# ---------------------------------------------------------------------------
# Request lifecycle
# ---------------------------------------------------------------------------

class TestRequestService:

    @pytest.fixture
    def equipment(self):
        return Equipment(name="Press", serial_number="P-1", team_id=uuid.uuid4())

    def test_create_inherits_equipment_team(self, svc, equipment):
        request = svc.create_request("  Leak  ", "", RequestType.CORRECTIVE, equipment, uuid.uuid4())
        assert request.team_id == equipment.team_id
        assert request.equipment_id == equipment.id
        assert request.status is RequestStatus.NEW
        assert request.subject == "Leak"
        assert request.assigned_to_id is None

    def test_create_requires_subject(self, svc, equipment):
        with pytest.raises(ValidationError) as exc_info:
            svc.create_request("   ", "", RequestType.CORRECTIVE, equipment, uuid.uuid4())
        assert _rule(exc_info) == "subject_required"

    def test_check_assignee_order(self, svc):
        request = MaintenanceRequest(team_id=uuid.uuid4())
        missing = uuid.uuid4()
        with pytest.raises(NotFoundError):
            svc.check_assignee(request, None, missing)

        manager = User(role=Role.MANAGER, team_id=request.team_id)
        with pytest.raises(ValidationError) as exc_info:
            svc.check_assignee(request, manager, manager.id)
        assert _rule(exc_info) == "assignee_not_technician"

        outsider = User(role=Role.TECHNICIAN, team_id=uuid.uuid4())
        with pytest.raises(TeamMismatch):
            svc.check_assignee(request, outsider, outsider.id)

        teamless = User(role=Role.TECHNICIAN, team_id=None)
        with pytest.raises(TeamMismatch):
            svc.check_assignee(request, teamless, teamless.id)

    def test_assign_moves_new_to_in_progress(self, svc):
        request = MaintenanceRequest(status=RequestStatus.NEW)
        tech = User(role=Role.TECHNICIAN)
        assert svc.assign(request, tech) is RequestStatus.NEW
        assert request.status is RequestStatus.IN_PROGRESS
        assert request.assigned_to_id == tech.id

    def test_reassign_keeps_in_progress(self, svc):
        request = MaintenanceRequest(status=RequestStatus.IN_PROGRESS, assigned_to_id=uuid.uuid4())
        tech = User(role=Role.TECHNICIAN)
        assert svc.assign(request, tech) is RequestStatus.IN_PROGRESS
        assert request.assigned_to_id == tech.id

    @pytest.mark.parametrize("status", [RequestStatus.REPAIRED, RequestStatus.SCRAP])
    def test_assign_terminal_request_is_refused(self, svc, status):
        request = MaintenanceRequest(status=status)
        with pytest.raises(InvalidStatusTransition):
            svc.assign(request, User(role=Role.TECHNICIAN))
        assert request.assigned_to_id is None

    def test_complete_records_duration(self, svc):
        request = MaintenanceRequest(status=RequestStatus.IN_PROGRESS)
        assert svc.complete(request, 2.5) is RequestStatus.IN_PROGRESS
        assert request.status is RequestStatus.REPAIRED
        assert request.duration_hours == 2.5

    @pytest.mark.parametrize("hours", [0, -1.0, float("nan"), float("inf")])
    def test_complete_requires_positive_duration(self, svc, hours):
        request = MaintenanceRequest(status=RequestStatus.IN_PROGRESS)
        with pytest.raises(ValidationError) as exc_info:
            svc.complete(request, hours)
        assert _rule(exc_info) == "duration_must_be_positive"
        assert request.status is RequestStatus.IN_PROGRESS

    def test_complete_new_request_is_invalid_transition(self, svc):
        with pytest.raises(InvalidStatusTransition):
            svc.complete(MaintenanceRequest(status=RequestStatus.NEW), 1.0)

    def test_scrap_is_idempotent(self, svc):
        request = MaintenanceRequest(status=RequestStatus.NEW)
        assert svc.scrap(request) is RequestStatus.NEW
        assert svc.scrap(request) is None
        assert request.status is RequestStatus.SCRAP

    def test_scrap_repaired_request_is_refused(self, svc):
        with pytest.raises(InvalidStatusTransition):
            svc.scrap(MaintenanceRequest(status=RequestStatus.REPAIRED))

    def test_overdue(self, svc):
        past = NOW - timedelta(days=1)
        assert svc.is_overdue(MaintenanceRequest(scheduled_date=past), now=NOW)
        assert not svc.is_overdue(MaintenanceRequest(scheduled_date=past, status=RequestStatus.REPAIRED), now=NOW)
        assert not svc.is_overdue(MaintenanceRequest(scheduled_date=None), now=NOW)


# ---------------------------------------------------------------------------
# Equipment Guard
# ---------------------------------------------------------------------------

class TestEquipmentService:

    def test_guard_missing_and_scrapped(self):
        svc = EquipmentService()
        missing = uuid.uuid4()
        with pytest.raises(NotFoundError):
            svc.assert_eligible_for_request(None, missing)
        with pytest.raises(EquipmentScrapped):
            svc.assert_eligible_for_request(Equipment(is_scrapped=True), missing)

    def test_cascade_is_one_way_and_never_raises(self):
        svc = EquipmentService()
        item = Equipment()
        assert svc.cascade_scrap(item) is True
        assert svc.cascade_scrap(item) is False
        assert item.is_scrapped

    def test_explicit_scrap_twice_is_refused(self):
        svc = EquipmentService()
        item = svc.scrap_equipment(Equipment(name="Drill"))
        with pytest.raises(ValidationError) as exc_info:
            svc.scrap_equipment(item)
        assert _rule(exc_info) == "already_scrapped"

    def test_scrapped_equipment_cannot_be_updated(self):
        svc = EquipmentService()
        with pytest.raises(EquipmentScrapped):
            svc.update_equipment(Equipment(is_scrapped=True), name="New name")

    def test_warranty_before_purchase(self):
        with pytest.raises(ValidationError) as exc_info:
            EquipmentService().create_equipment(
                "Saw", "S-1", "Wood", "Hall 3", date(2024, 5, 1), uuid.uuid4(), warranty_end=date(2024, 4, 1)
            )
        assert _rule(exc_info) == "warranty_before_purchase"

    def test_delete_with_requests_is_refused(self):
        with pytest.raises(ValidationError) as exc_info:
            EquipmentService().ensure_deletable(Equipment(name="Saw"), request_count=2)
        assert _rule(exc_info) == "equipment_has_requests"


# ---------------------------------------------------------------------------
# Organisation and audit
# ---------------------------------------------------------------------------

class TestOrganisationServices:

    def test_team_with_members_is_not_deletable(self):
        svc = TeamService()
        team = svc.create_team(" Night shift ")
        assert team.name == "Night shift"
        with pytest.raises(ValidationError) as exc_info:
            svc.ensure_deletable(team, user_count=1, equipment_count=0, request_count=0)
        assert _rule(exc_info) == "team_not_empty"
        assert svc.ensure_deletable(Team(name="Empty"), 0, 0, 0).name == "Empty"

    def test_email_is_normalised(self):
        user = UserService().create_user("Sam", "  Sam@Example.COM ", Role.TECHNICIAN)
        assert user.email == "sam@example.com"
        with pytest.raises(ValidationError):
            UserService.normalise_email("not-an-email")

    def test_user_referenced_by_history_is_not_deletable(self):
        svc = UserService()
        user = User(name="Sam")
        with pytest.raises(ValidationError) as exc_info:
            svc.ensure_deletable(user, assigned_request_count=1)
        assert _rule(exc_info) == "user_has_assigned_requests"
        with pytest.raises(ValidationError) as exc_info:
            svc.ensure_deletable(user, assigned_request_count=0, history_count=3)
        assert _rule(exc_info) == "user_has_history"

    def test_open_assignee_keeps_role_and_team(self):
        svc = UserService()
        team_id = uuid.uuid4()
        user = User(name="Sam", role=Role.TECHNICIAN, team_id=team_id)

        for changes in ({"role": Role.MANAGER}, {"team_id": uuid.uuid4()}, {"clear_team": True}):
            with pytest.raises(ValidationError) as exc_info:
                svc.ensure_reassignable(user, open_assignment_count=1, **changes)
            assert _rule(exc_info) == "user_has_open_assignments"

        assert svc.ensure_reassignable(user, 1, role=Role.TECHNICIAN, team_id=team_id) is user
        assert svc.ensure_reassignable(user, 0, role=Role.MANAGER) is user

    def test_update_user_clears_team(self):
        user = User(team_id=uuid.uuid4())
        UserService().update_user(user, clear_team=True)
        assert user.team_id is None

    def test_audit_sequence_continues_from_existing(self):
        svc = AuditService()
        request_id, actor_id = uuid.uuid4(), uuid.uuid4()
        first = svc.record_transition(request_id, None, RequestStatus.NEW, actor_id, [])
        second = svc.record_transition(request_id, RequestStatus.NEW, RequestStatus.IN_PROGRESS, actor_id, [first])
        assert (first.sequence_number, second.sequence_number) == (1, 2)
        assert first.old_status is None
        assert svc.history([second, first]) == [first, second]
