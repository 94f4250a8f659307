"""
policy.py

Authorization Policy for the Maintenance Tracker.

Every role and team check in the system is answered here and nowhere else.
Each rule exists in two forms:

    require_<rule>(actor, ...)  -> None, raises PermissionDenied(predicate, reason)
    can_<rule>(actor, ...)      -> bool

The boolean form is derived from the raising form, so the two can never
disagree.  All rules fail closed: a missing actor is NOT_AUTHENTICATED and a
missing resource is RESOURCE_MISSING.  Team membership only matches when the
actor actually has a team.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from typing import Callable, Optional

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

# Statuses a technician may move their own request into.
TECHNICIAN_TARGET_STATUSES = frozenset({RequestStatus.REPAIRED, RequestStatus.SCRAP})


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------

def _require_actor(actor: Optional[Actor], predicate: str) -> Actor:
    if actor is None:
        raise PermissionDenied(predicate, DenialReason.NOT_AUTHENTICATED)
    return actor


def _require_resource(resource: object, predicate: str) -> None:
    if resource is None:
        raise PermissionDenied(predicate, DenialReason.RESOURCE_MISSING)


def _require_role(actor: Actor, predicate: str, *allowed: Role) -> None:
    if actor.role not in allowed:
        raise PermissionDenied(predicate, DenialReason.ROLE_NOT_PERMITTED)


def _same_team(actor: Actor, team_id: Optional[uuid.UUID]) -> bool:
    return actor.team_id is not None and actor.team_id == team_id


def _is_assignee(actor: Actor, request: MaintenanceRequest) -> bool:
    return request.assigned_to_id is not None and request.assigned_to_id == actor.id


def _allows(check: Callable[..., None], *args) -> bool:
    try:
        check(*args)
    except PermissionDenied:
        return False
    return True


# ===========================================================================
# MAINTENANCE REQUEST RULES
# ===========================================================================

def require_create_request(actor: Optional[Actor]) -> None:
    actor = _require_actor(actor, "create_request")
    _require_role(actor, "create_request", Role.ADMIN, Role.MANAGER)


def require_assign_request(actor: Optional[Actor]) -> None:
    actor = _require_actor(actor, "assign_request")
    _require_role(actor, "assign_request", Role.ADMIN, Role.MANAGER)


def require_view_request(actor: Optional[Actor], request: Optional[MaintenanceRequest]) -> None:
    """
    ADMIN sees everything, a MANAGER sees their team's requests, and a
    TECHNICIAN sees their team's requests plus anything assigned to them.
    """
    predicate = "view_request"
    actor = _require_actor(actor, predicate)
    _require_resource(request, predicate)
    if actor.role is Role.ADMIN:
        return
    if actor.role is Role.MANAGER:
        if not _same_team(actor, request.team_id):
            raise PermissionDenied(predicate, DenialReason.TEAM_MISMATCH)
        return
    if actor.role is Role.TECHNICIAN:
        if _is_assignee(actor, request) or _same_team(actor, request.team_id):
            return
        raise PermissionDenied(predicate, DenialReason.TEAM_MISMATCH)
    raise PermissionDenied(predicate, DenialReason.ROLE_NOT_PERMITTED)


def require_modify_request(actor: Optional[Actor], request: Optional[MaintenanceRequest]) -> None:
    """
    Like viewing, except that team membership alone does not let a
    technician modify a request: they must be its assignee.
    """
    predicate = "modify_request"
    actor = _require_actor(actor, predicate)
    _require_resource(request, predicate)
    if actor.role is Role.ADMIN:
        return
    if actor.role is Role.MANAGER:
        if not _same_team(actor, request.team_id):
            raise PermissionDenied(predicate, DenialReason.TEAM_MISMATCH)
        return
    if actor.role is Role.TECHNICIAN:
        if not _is_assignee(actor, request):
            raise PermissionDenied(predicate, DenialReason.NOT_ASSIGNEE)
        return
    raise PermissionDenied(predicate, DenialReason.ROLE_NOT_PERMITTED)


def require_update_status(
    actor: Optional[Actor],
    request: Optional[MaintenanceRequest],
    new_status: RequestStatus,
) -> None:
    predicate = "update_status"
    actor = _require_actor(actor, predicate)
    _require_resource(request, predicate)
    if actor.role is Role.ADMIN:
        return
    if actor.role is Role.MANAGER:
        if not _same_team(actor, request.team_id):
            raise PermissionDenied(predicate, DenialReason.TEAM_MISMATCH)
        return
    if actor.role is Role.TECHNICIAN:
        if not _is_assignee(actor, request):
            raise PermissionDenied(predicate, DenialReason.NOT_ASSIGNEE)
        if new_status not in TECHNICIAN_TARGET_STATUSES:
            raise PermissionDenied(predicate, DenialReason.STATUS_NOT_PERMITTED)
        return
    raise PermissionDenied(predicate, DenialReason.ROLE_NOT_PERMITTED)


def can_create_request(actor: Optional[Actor]) -> bool:
    return _allows(require_create_request, actor)


def can_assign_request(actor: Optional[Actor]) -> bool:
    return _allows(require_assign_request, actor)


def can_view_request(actor: Optional[Actor], request: Optional[MaintenanceRequest]) -> bool:
    return _allows(require_view_request, actor, request)


def can_modify_request(actor: Optional[Actor], request: Optional[MaintenanceRequest]) -> bool:
    return _allows(require_modify_request, actor, request)


def can_update_status(
    actor: Optional[Actor],
    request: Optional[MaintenanceRequest],
    new_status: RequestStatus,
) -> bool:
    return _allows(require_update_status, actor, request, new_status)


# ===========================================================================
# MANAGEMENT RULES
# ===========================================================================

def require_manage_users(actor: Optional[Actor]) -> None:
    actor = _require_actor(actor, "manage_users")
    _require_role(actor, "manage_users", Role.ADMIN)


def require_manage_teams(actor: Optional[Actor]) -> None:
    actor = _require_actor(actor, "manage_teams")
    _require_role(actor, "manage_teams", Role.ADMIN)


def require_manage_equipment(actor: Optional[Actor], team_id: Optional[uuid.UUID]) -> None:
    """ADMIN manages any team's equipment, a MANAGER only their own team's."""
    predicate = "manage_equipment"
    actor = _require_actor(actor, predicate)
    _require_resource(team_id, predicate)
    _require_role(actor, predicate, Role.ADMIN, Role.MANAGER)
    if actor.role is Role.MANAGER and not _same_team(actor, team_id):
        raise PermissionDenied(predicate, DenialReason.TEAM_MISMATCH)


def require_view_team(actor: Optional[Actor], team_id: Optional[uuid.UUID]) -> None:
    predicate = "view_team"
    actor = _require_actor(actor, predicate)
    _require_resource(team_id, predicate)
    if actor.role is not Role.ADMIN and not _same_team(actor, team_id):
        raise PermissionDenied(predicate, DenialReason.TEAM_MISMATCH)


def require_view_equipment(actor: Optional[Actor], equipment: Optional[Equipment]) -> None:
    predicate = "view_equipment"
    actor = _require_actor(actor, predicate)
    _require_resource(equipment, predicate)
    if actor.role is not Role.ADMIN and not _same_team(actor, equipment.team_id):
        raise PermissionDenied(predicate, DenialReason.TEAM_MISMATCH)


def require_view_user(actor: Optional[Actor], user: Optional[User]) -> None:
    """Anyone may see themselves; a MANAGER also sees the users of their team."""
    predicate = "view_user"
    actor = _require_actor(actor, predicate)
    _require_resource(user, predicate)
    if actor.role is Role.ADMIN or actor.id == user.id:
        return
    if actor.role is Role.MANAGER:
        if not _same_team(actor, user.team_id):
            raise PermissionDenied(predicate, DenialReason.TEAM_MISMATCH)
        return
    raise PermissionDenied(predicate, DenialReason.ROLE_NOT_PERMITTED)


def require_list_users(actor: Optional[Actor]) -> None:
    actor = _require_actor(actor, "list_users")
    _require_role(actor, "list_users", Role.ADMIN, Role.MANAGER)


def can_manage_users(actor: Optional[Actor]) -> bool:
    return _allows(require_manage_users, actor)


def can_manage_teams(actor: Optional[Actor]) -> bool:
    return _allows(require_manage_teams, actor)


def can_manage_equipment(actor: Optional[Actor], team_id: Optional[uuid.UUID]) -> bool:
    return _allows(require_manage_equipment, actor, team_id)


def can_view_team(actor: Optional[Actor], team_id: Optional[uuid.UUID]) -> bool:
    return _allows(require_view_team, actor, team_id)


def can_view_equipment(actor: Optional[Actor], equipment: Optional[Equipment]) -> bool:
    return _allows(require_view_equipment, actor, equipment)


def can_view_user(actor: Optional[Actor], user: Optional[User]) -> bool:
    return _allows(require_view_user, actor, user)


# ===========================================================================
# LIST SCOPES
# ===========================================================================

@dataclass(frozen=True)
class ListScope:
    """
    Row restriction for list queries.

    Unless `unrestricted`, a row is visible when it belongs to `team_id` OR
    is assigned to `assigned_to_id`.  A scope with neither set matches nothing.
    """
    unrestricted: bool = False
    team_id: Optional[uuid.UUID] = None
    assigned_to_id: Optional[uuid.UUID] = None


def request_list_scope(actor: Optional[Actor], team_filter: Optional[uuid.UUID] = None) -> ListScope:
    """
    Scope of the requests (and of their logs) an actor may list.

    An explicit filter for another team is refused rather than silently
    rewritten to the actor's own team.
    """
    predicate = "list_requests"
    actor = _require_actor(actor, predicate)
    if actor.role is Role.ADMIN:
        return ListScope(unrestricted=True)
    if team_filter is not None and not _same_team(actor, team_filter):
        raise PermissionDenied(predicate, DenialReason.TEAM_MISMATCH)
    if actor.role is Role.MANAGER:
        return ListScope(team_id=actor.team_id)
    if actor.role is Role.TECHNICIAN:
        return ListScope(team_id=actor.team_id, assigned_to_id=actor.id)
    raise PermissionDenied(predicate, DenialReason.ROLE_NOT_PERMITTED)


def team_list_scope(
    actor: Optional[Actor],
    team_filter: Optional[uuid.UUID],
    predicate: str,
) -> ListScope:
    """Scope for team-owned rows (equipment, users, teams): own team unless ADMIN."""
    actor = _require_actor(actor, predicate)
    if actor.role is Role.ADMIN:
        return ListScope(unrestricted=True)
    if team_filter is not None and not _same_team(actor, team_filter):
        raise PermissionDenied(predicate, DenialReason.TEAM_MISMATCH)
    return ListScope(team_id=actor.team_id)
