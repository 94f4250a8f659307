"""
infrastructure.py

SQLAlchemy implementation of all repository interfaces and the Unit of Work.

One SqlAlchemyUnitOfWork opens one Session per `with` block; every write of
a use case goes through that session and is committed or rolled back as a
whole.  Repositories flush on save so that rows reach the database in the
order the use case wrote them, and so that a stale or duplicate write fails
at the point it happens.

Database errors are translated into the tagged domain errors:

    StaleDataError  → ConcurrencyError   (another transaction won the race)
    IntegrityError  → ConflictError      (unique constraint violated)

Tests bind the same classes to an in-memory SQLite engine:

    app.dependency_overrides[get_uow] = lambda: SqlAlchemyUnitOfWork(session_factory)

Nothing in service.py, application.py, or api.py needs to change.
"""

from __future__ import annotations

from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Optional, Tuple

from sqlalchemy import and_, false, func, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.orm.exc import StaleDataError

from application import (
    AbstractEquipmentRepository,
    AbstractMaintenanceRequestRepository,
    AbstractRequestLogRepository,
    AbstractTeamRepository,
    AbstractUnitOfWork,
    AbstractUserRepository,
    EquipmentFilter,
    LogFilter,
    RequestFilter,
)
from model import (
    TERMINAL_STATUSES,
    ConcurrencyError,
    ConflictError,
    Equipment,
    MaintenanceRequest,
    RequestLog,
    Team,
    User,
)
from orm import equipment, maintenance_requests, request_logs, start_mappers, teams, users
from policy import ListScope


# ---------------------------------------------------------------------------
# Error translation
# ---------------------------------------------------------------------------

@contextmanager
def _translate_errors(session: Session, entity: str):
    try:
        yield
    except StaleDataError as exc:
        session.rollback()
        raise ConcurrencyError(entity, str(exc)) from exc
    except IntegrityError as exc:
        session.rollback()
        raise ConflictError(
            f"{entity} conflicts with an existing record.",
            entity=entity,
            detail=str(exc.orig),
        ) from exc


def _scope_clause(scope: ListScope, team_col, assignee_col=None):
    """Translate a policy ListScope into a WHERE clause (None = no restriction)."""
    if scope.unrestricted:
        return None
    clauses = []
    if scope.team_id is not None:
        clauses.append(team_col == scope.team_id)
    if scope.assigned_to_id is not None and assignee_col is not None:
        clauses.append(assignee_col == scope.assigned_to_id)
    return or_(*clauses) if clauses else false()


def _page(stmt, session: Session, page: int, limit: int, *order_by) -> Tuple[list, int]:
    total = session.scalar(select(func.count()).select_from(stmt.order_by(None).subquery()))
    rows = session.scalars(
        stmt.order_by(*order_by).offset((page - 1) * limit).limit(limit)
    ).all()
    return list(rows), int(total or 0)


class _SqlAlchemyRepository:
    entity = "Record"

    def __init__(self, session: Session):
        self.session = session

    def _persist(self, obj) -> None:
        self.session.add(obj)
        with _translate_errors(self.session, self.entity):
            self.session.flush()

    def _remove(self, obj) -> None:
        self.session.delete(obj)
        with _translate_errors(self.session, self.entity):
            self.session.flush()


# ---------------------------------------------------------------------------
# Repository implementations
# ---------------------------------------------------------------------------

class SqlAlchemyTeamRepository(_SqlAlchemyRepository, AbstractTeamRepository):
    entity = "Team"

    def get(self, team_id):
        return self.session.get(Team, team_id)

    def get_by_name(self, name):
        return self.session.scalars(
            select(Team).where(func.lower(teams.c.name) == name.strip().lower())
        ).first()

    def list(self, scope):
        stmt = select(Team)
        clause = _scope_clause(scope, teams.c.id)
        if clause is not None:
            stmt = stmt.where(clause)
        return list(self.session.scalars(stmt.order_by(teams.c.name)).all())

    def save(self, team):
        self._persist(team)

    def delete(self, team):
        self._remove(team)


class SqlAlchemyUserRepository(_SqlAlchemyRepository, AbstractUserRepository):
    entity = "User"

    def get(self, user_id):
        return self.session.get(User, user_id)

    def get_by_email(self, email):
        return self.session.scalars(
            select(User).where(users.c.email == email.strip().lower())
        ).first()

    def list(self, scope, team_id=None, role=None, is_active=None):
        stmt = select(User)
        clause = _scope_clause(scope, users.c.team_id)
        if clause is not None:
            stmt = stmt.where(clause)
        if team_id is not None:
            stmt = stmt.where(users.c.team_id == team_id)
        if role is not None:
            stmt = stmt.where(users.c.role == role)
        if is_active is not None:
            stmt = stmt.where(users.c.is_active == is_active)
        return list(self.session.scalars(stmt.order_by(users.c.name)).all())

    def count_for_team(self, team_id):
        return self.session.scalar(
            select(func.count()).select_from(users).where(users.c.team_id == team_id)
        )

    def save(self, user):
        self._persist(user)

    def delete(self, user):
        self._remove(user)


class SqlAlchemyEquipmentRepository(_SqlAlchemyRepository, AbstractEquipmentRepository):
    entity = "Equipment"

    def get(self, equipment_id):
        return self.session.get(Equipment, equipment_id)

    def get_by_serial(self, serial_number):
        return self.session.scalars(
            select(Equipment).where(equipment.c.serial_number == serial_number.strip())
        ).first()

    def list(self, filters: EquipmentFilter, scope: ListScope):
        stmt = select(Equipment)
        clause = _scope_clause(scope, equipment.c.team_id)
        if clause is not None:
            stmt = stmt.where(clause)
        if filters.team_id is not None:
            stmt = stmt.where(equipment.c.team_id == filters.team_id)
        if not filters.include_scrapped:
            stmt = stmt.where(~equipment.c.is_scrapped)
        if filters.department:
            stmt = stmt.where(equipment.c.department.icontains(filters.department, autoescape=True))
        if filters.location:
            stmt = stmt.where(equipment.c.location.icontains(filters.location, autoescape=True))
        if filters.search:
            text = filters.search
            stmt = stmt.where(
                or_(
                    equipment.c.name.icontains(text, autoescape=True),
                    equipment.c.serial_number.icontains(text, autoescape=True),
                )
            )
        return list(self.session.scalars(stmt.order_by(equipment.c.name)).all())

    def count_for_team(self, team_id):
        return self.session.scalar(
            select(func.count()).select_from(equipment).where(equipment.c.team_id == team_id)
        )

    def save(self, item):
        self._persist(item)

    def delete(self, item):
        self._remove(item)


class SqlAlchemyMaintenanceRequestRepository(
    _SqlAlchemyRepository, AbstractMaintenanceRequestRepository
):
    entity = "MaintenanceRequest"

    def get(self, request_id):
        return self.session.get(MaintenanceRequest, request_id)

    def list(self, filters: RequestFilter, scope: ListScope, page: int, limit: int):
        c = maintenance_requests.c
        stmt = select(MaintenanceRequest)
        clause = _scope_clause(scope, c.team_id, c.assigned_to_id)
        if clause is not None:
            stmt = stmt.where(clause)
        if filters.team_id is not None:
            stmt = stmt.where(c.team_id == filters.team_id)
        if filters.assigned_to_id is not None:
            stmt = stmt.where(c.assigned_to_id == filters.assigned_to_id)
        if filters.equipment_id is not None:
            stmt = stmt.where(c.equipment_id == filters.equipment_id)
        if filters.status is not None:
            stmt = stmt.where(c.status == filters.status)
        if filters.type is not None:
            stmt = stmt.where(c.type == filters.type)
        if filters.search:
            text = filters.search
            stmt = stmt.where(
                or_(c.subject.icontains(text, autoescape=True), c.description.icontains(text, autoescape=True))
            )
        if filters.scheduled_from is not None:
            stmt = stmt.where(c.scheduled_date >= filters.scheduled_from)
        if filters.scheduled_to is not None:
            stmt = stmt.where(c.scheduled_date <= filters.scheduled_to)
        if filters.overdue:
            stmt = stmt.where(
                and_(
                    c.scheduled_date < datetime.now(timezone.utc),
                    c.status.not_in(list(TERMINAL_STATUSES)),
                )
            )
        return _page(stmt, self.session, page, limit, c.created_at.desc(), c.id)

    def count_for_team(self, team_id):
        return self.session.scalar(
            select(func.count())
            .select_from(maintenance_requests)
            .where(maintenance_requests.c.team_id == team_id)
        )

    def count_for_equipment(self, equipment_id):
        return self.session.scalar(
            select(func.count())
            .select_from(maintenance_requests)
            .where(maintenance_requests.c.equipment_id == equipment_id)
        )

    def count_assigned_to(self, user_id, open_only=False):
        c = maintenance_requests.c
        stmt = select(func.count()).select_from(maintenance_requests).where(c.assigned_to_id == user_id)
        if open_only:
            stmt = stmt.where(c.status.not_in(list(TERMINAL_STATUSES)))
        return self.session.scalar(stmt)

    def save(self, request):
        self._persist(request)


class SqlAlchemyRequestLogRepository(_SqlAlchemyRepository, AbstractRequestLogRepository):
    entity = "RequestLog"

    def list_for_request(self, request_id):
        return list(
            self.session.scalars(
                select(RequestLog)
                .where(request_logs.c.request_id == request_id)
                .order_by(request_logs.c.sequence_number)
            ).all()
        )

    def search(self, filters: LogFilter, scope: ListScope, page: int, limit: int):
        c = request_logs.c
        stmt = select(RequestLog).join(
            maintenance_requests, maintenance_requests.c.id == c.request_id
        )
        clause = _scope_clause(
            scope, maintenance_requests.c.team_id, maintenance_requests.c.assigned_to_id
        )
        if clause is not None:
            stmt = stmt.where(clause)
        if filters.request_id is not None:
            stmt = stmt.where(c.request_id == filters.request_id)
        if filters.changed_by_id is not None:
            stmt = stmt.where(c.changed_by_id == filters.changed_by_id)
        if filters.status is not None:
            stmt = stmt.where(c.new_status == filters.status)
        if filters.from_date is not None:
            stmt = stmt.where(c.changed_at >= filters.from_date)
        if filters.to_date is not None:
            stmt = stmt.where(c.changed_at <= filters.to_date)
        return _page(stmt, self.session, page, limit, c.changed_at.desc(), c.sequence_number.desc())

    def count_by_user(self, user_id):
        return self.session.scalar(
            select(func.count())
            .select_from(request_logs)
            .where(request_logs.c.changed_by_id == user_id)
        )

    def add(self, entry):
        self._persist(entry)


# ---------------------------------------------------------------------------
# Unit of Work
# ---------------------------------------------------------------------------

class SqlAlchemyUnitOfWork(AbstractUnitOfWork):
    """
    Opens a Session on enter and builds the repositories around it.
    commit() / rollback() act on that session; leaving the block always
    closes it.
    """

    def __init__(self, session_factory: Optional[sessionmaker] = None):
        start_mappers()
        if session_factory is None:
            from db import SessionLocal
            session_factory = SessionLocal
        self.session_factory = session_factory
        self.session: Optional[Session] = None

    def __enter__(self) -> "SqlAlchemyUnitOfWork":
        self.session = self.session_factory()
        self.teams = SqlAlchemyTeamRepository(self.session)
        self.users = SqlAlchemyUserRepository(self.session)
        self.equipment = SqlAlchemyEquipmentRepository(self.session)
        self.requests = SqlAlchemyMaintenanceRequestRepository(self.session)
        self.logs = SqlAlchemyRequestLogRepository(self.session)
        return super().__enter__()

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        try:
            super().__exit__(exc_type, exc_val, exc_tb)
        finally:
            self.session.close()

    def commit(self) -> None:
        with _translate_errors(self.session, "Transaction"):
            self.session.commit()

    def rollback(self) -> None:
        self.session.rollback()
