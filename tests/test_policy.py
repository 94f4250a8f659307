import uuid

import pytest

import policy
from model import (
    Actor,
    DenialReason,
    Equipment,
    MaintenanceRequest,
    PermissionDenied,
    RequestStatus,
    Role,
    User,
)

TEAM_A = uuid.uuid4()
TEAM_B = uuid.uuid4()

ADMIN = Actor(id=uuid.uuid4(), role=Role.ADMIN)
MANAGER_A = Actor(id=uuid.uuid4(), role=Role.MANAGER, team_id=TEAM_A)
MANAGER_B = Actor(id=uuid.uuid4(), role=Role.MANAGER, team_id=TEAM_B)
MANAGER_NO_TEAM = Actor(id=uuid.uuid4(), role=Role.MANAGER)
TECH_A = Actor(id=uuid.uuid4(), role=Role.TECHNICIAN, team_id=TEAM_A)
TECH_A2 = Actor(id=uuid.uuid4(), role=Role.TECHNICIAN, team_id=TEAM_A)
TECH_B = Actor(id=uuid.uuid4(), role=Role.TECHNICIAN, team_id=TEAM_B)

ALL_ACTORS = [None, ADMIN, MANAGER_A, MANAGER_B, MANAGER_NO_TEAM, TECH_A, TECH_A2, TECH_B]


def _request(team_id=TEAM_A, assigned_to=None, status=RequestStatus.IN_PROGRESS):
    return MaintenanceRequest(
        subject="Belt slipping",
        team_id=team_id,
        assigned_to_id=assigned_to.id if assigned_to else None,
        status=status,
    )


def _reason(check, *args):
    with pytest.raises(PermissionDenied) as exc_info:
        check(*args)
    return exc_info.value.reason


class TestRequestRules:

    def test_only_admin_and_manager_create_requests(self):
        policy.require_create_request(ADMIN)
        policy.require_create_request(MANAGER_A)
        assert _reason(policy.require_create_request, TECH_A) is DenialReason.ROLE_NOT_PERMITTED

    def test_missing_actor_is_not_authenticated(self):
        assert _reason(policy.require_create_request, None) is DenialReason.NOT_AUTHENTICATED
        assert _reason(policy.require_view_request, None, _request()) is DenialReason.NOT_AUTHENTICATED

    def test_missing_request_is_resource_missing(self):
        assert _reason(policy.require_view_request, ADMIN, None) is DenialReason.RESOURCE_MISSING
        assert _reason(policy.require_modify_request, MANAGER_A, None) is DenialReason.RESOURCE_MISSING

    def test_technicians_cannot_assign(self):
        assert _reason(policy.require_assign_request, TECH_A) is DenialReason.ROLE_NOT_PERMITTED
        assert policy.can_assign_request(MANAGER_B)

    def test_manager_sees_only_own_team(self):
        request = _request(team_id=TEAM_A)
        policy.require_view_request(MANAGER_A, request)
        assert _reason(policy.require_view_request, MANAGER_B, request) is DenialReason.TEAM_MISMATCH

    def test_actor_without_team_never_matches(self):
        # A request whose team is unset must not match an actor whose team is unset.
        request = _request(team_id=None)
        assert _reason(policy.require_view_request, MANAGER_NO_TEAM, request) is DenialReason.TEAM_MISMATCH

    def test_technician_sees_team_and_assigned_requests(self):
        policy.require_view_request(TECH_A2, _request(team_id=TEAM_A, assigned_to=TECH_A))
        policy.require_view_request(TECH_B, _request(team_id=TEAM_A, assigned_to=TECH_B))
        assert _reason(policy.require_view_request, TECH_B, _request(team_id=TEAM_A)) is DenialReason.TEAM_MISMATCH

    def test_technician_modifies_only_assigned(self):
        request = _request(assigned_to=TECH_A)
        policy.require_modify_request(TECH_A, request)
        assert _reason(policy.require_modify_request, TECH_A2, request) is DenialReason.NOT_ASSIGNEE

    def test_technician_status_targets(self):
        request = _request(assigned_to=TECH_A)
        policy.require_update_status(TECH_A, request, RequestStatus.REPAIRED)
        policy.require_update_status(TECH_A, request, RequestStatus.SCRAP)
        assert (
            _reason(policy.require_update_status, TECH_A, request, RequestStatus.IN_PROGRESS)
            is DenialReason.STATUS_NOT_PERMITTED
        )

    def test_assignee_is_checked_before_target_status(self):
        request = _request(assigned_to=TECH_A)
        assert (
            _reason(policy.require_update_status, TECH_A2, request, RequestStatus.NEW)
            is DenialReason.NOT_ASSIGNEE
        )

    def test_manager_updates_own_team_only(self):
        request = _request(team_id=TEAM_B)
        policy.require_update_status(MANAGER_B, request, RequestStatus.SCRAP)
        assert (
            _reason(policy.require_update_status, MANAGER_A, request, RequestStatus.SCRAP)
            is DenialReason.TEAM_MISMATCH
        )

    @pytest.mark.parametrize("actor", ALL_ACTORS)
    @pytest.mark.parametrize("request_team", [TEAM_A, TEAM_B, None])
    @pytest.mark.parametrize("status", list(RequestStatus))
    def test_boolean_form_agrees_with_raising_form(self, actor, request_team, status):
        request = _request(team_id=request_team, assigned_to=TECH_A)
        pairs = [
            (policy.can_view_request, policy.require_view_request, (actor, request)),
            (policy.can_modify_request, policy.require_modify_request, (actor, request)),
            (policy.can_update_status, policy.require_update_status, (actor, request, status)),
        ]
        for can, require, args in pairs:
            try:
                require(*args)
                raised = False
            except PermissionDenied:
                raised = True
            assert can(*args) is not raised


class TestManagementRules:

    def test_users_and_teams_are_admin_only(self):
        policy.require_manage_users(ADMIN)
        policy.require_manage_teams(ADMIN)
        assert not policy.can_manage_users(MANAGER_A)
        assert not policy.can_manage_teams(TECH_A)

    def test_manager_manages_equipment_of_own_team(self):
        policy.require_manage_equipment(ADMIN, TEAM_B)
        policy.require_manage_equipment(MANAGER_A, TEAM_A)
        assert _reason(policy.require_manage_equipment, MANAGER_A, TEAM_B) is DenialReason.TEAM_MISMATCH
        assert _reason(policy.require_manage_equipment, TECH_A, TEAM_A) is DenialReason.ROLE_NOT_PERMITTED

    def test_equipment_visibility(self):
        item = Equipment(name="Pump", serial_number="P-1", team_id=TEAM_A)
        assert policy.can_view_equipment(TECH_A, item)
        assert not policy.can_view_equipment(TECH_B, item)
        assert policy.can_view_equipment(ADMIN, item)

    def test_user_visibility(self):
        user = User(id=TECH_A.id, name="Tech", email="t@example.com", team_id=TEAM_A)
        assert policy.can_view_user(TECH_A, user)
        assert policy.can_view_user(MANAGER_A, user)
        assert not policy.can_view_user(MANAGER_B, user)
        assert not policy.can_view_user(TECH_A2, user)

    def test_team_visibility(self):
        assert policy.can_view_team(TECH_A, TEAM_A)
        assert not policy.can_view_team(TECH_A, TEAM_B)
        assert policy.can_view_team(ADMIN, TEAM_B)


class TestListScopes:

    def test_admin_is_unrestricted(self):
        assert policy.request_list_scope(ADMIN, TEAM_B).unrestricted

    def test_manager_is_limited_to_team(self):
        scope = policy.request_list_scope(MANAGER_A)
        assert scope == policy.ListScope(team_id=TEAM_A)

    def test_technician_sees_team_or_assigned(self):
        scope = policy.request_list_scope(TECH_A)
        assert scope.team_id == TEAM_A
        assert scope.assigned_to_id == TECH_A.id

    def test_foreign_team_filter_is_refused(self):
        assert _reason(policy.request_list_scope, MANAGER_A, TEAM_B) is DenialReason.TEAM_MISMATCH
        assert _reason(policy.team_list_scope, TECH_B, TEAM_A, "list_equipment") is DenialReason.TEAM_MISMATCH

    def test_own_team_filter_is_accepted(self):
        assert policy.request_list_scope(MANAGER_A, TEAM_A).team_id == TEAM_A

    def test_unauthenticated_list_is_refused(self):
        assert _reason(policy.request_list_scope, None) is DenialReason.NOT_AUTHENTICATED
