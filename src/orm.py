"""
orm.py

Relational schema and imperative mapping of the domain dataclasses.

The domain model stays framework-agnostic: the tables below are declared
separately and bound to the dataclasses from model.py by start_mappers().
No relationship() is mapped; repositories resolve references by id.

`maintenance_requests.version_id` is the optimistic-concurrency counter.
Every UPDATE of a request carries `WHERE version_id = <loaded value>`, so a
writer that raced another transaction fails with StaleDataError instead of
silently overwriting it.
"""

from __future__ import annotations

from datetime import timezone

from sqlalchemy import (
    Boolean,
    Column,
    Date,
    DateTime,
    Enum,
    Float,
    ForeignKey,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import registry
from sqlalchemy.types import TypeDecorator

from model import (
    Equipment,
    MaintenanceRequest,
    RequestLog,
    RequestStatus,
    RequestType,
    Role,
    Team,
    User,
)


class UtcDateTime(TypeDecorator):
    """Timezone-aware datetime that always comes back as UTC, even from SQLite."""
    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is not None and value.tzinfo is not None:
            value = value.astimezone(timezone.utc)
        return value

    def process_result_value(self, value, dialect):
        if value is not None and value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value


metadata = MetaData()
mapper_registry = registry(metadata=metadata)

# One named type shared by every status column.
_status_type = Enum(RequestStatus, name="request_status")


# ---------------------------------------------------------------------------
# Tables
# ---------------------------------------------------------------------------

teams = Table(
    "teams",
    metadata,
    Column("id", Uuid, primary_key=True),
    Column("name", String(200), nullable=False, unique=True),
    Column("created_at", UtcDateTime, nullable=False),
    Column("updated_at", UtcDateTime, nullable=False),
)

users = Table(
    "users",
    metadata,
    Column("id", Uuid, primary_key=True),
    Column("name", String(200), nullable=False),
    Column("email", String(320), nullable=False, unique=True),
    Column("role", Enum(Role, name="user_role"), nullable=False),
    Column("team_id", Uuid, ForeignKey("teams.id"), nullable=True, index=True),
    Column("is_active", Boolean, nullable=False, default=True),
    Column("created_at", UtcDateTime, nullable=False),
    Column("updated_at", UtcDateTime, nullable=False),
)

equipment = Table(
    "equipment",
    metadata,
    Column("id", Uuid, primary_key=True),
    Column("name", String(200), nullable=False),
    Column("serial_number", String(100), nullable=False, unique=True),
    Column("department", String(200), nullable=False, default=""),
    Column("location", String(200), nullable=False, default=""),
    Column("purchase_date", Date, nullable=True),
    Column("warranty_end", Date, nullable=True),
    Column("team_id", Uuid, ForeignKey("teams.id"), nullable=False, index=True),
    Column("is_scrapped", Boolean, nullable=False, default=False),
    Column("created_at", UtcDateTime, nullable=False),
    Column("updated_at", UtcDateTime, nullable=False),
)

maintenance_requests = Table(
    "maintenance_requests",
    metadata,
    Column("id", Uuid, primary_key=True),
    Column("subject", String(300), nullable=False),
    Column("description", Text, nullable=False, default=""),
    Column("type", Enum(RequestType, name="request_type"), nullable=False),
    Column("status", _status_type, nullable=False, index=True),
    Column("equipment_id", Uuid, ForeignKey("equipment.id"), nullable=False, index=True),
    Column("team_id", Uuid, ForeignKey("teams.id"), nullable=False, index=True),
    Column("assigned_to_id", Uuid, ForeignKey("users.id"), nullable=True, index=True),
    Column("scheduled_date", UtcDateTime, nullable=True),
    Column("duration_hours", Float, nullable=True),
    Column("created_by_id", Uuid, ForeignKey("users.id"), nullable=False),
    Column("created_at", UtcDateTime, nullable=False),
    Column("updated_at", UtcDateTime, nullable=False),
    Column("version_id", Integer, nullable=False),
)

request_logs = Table(
    "request_logs",
    metadata,
    Column("id", Uuid, primary_key=True),
    Column("request_id", Uuid, ForeignKey("maintenance_requests.id"), nullable=False, index=True),
    Column("sequence_number", Integer, nullable=False),
    Column("old_status", _status_type, nullable=True),
    Column("new_status", _status_type, nullable=False),
    Column("changed_by_id", Uuid, ForeignKey("users.id"), nullable=False, index=True),
    Column("changed_at", UtcDateTime, nullable=False),
    UniqueConstraint("request_id", "sequence_number", name="uq_request_log_sequence"),
)


# ---------------------------------------------------------------------------
# Mapping
# ---------------------------------------------------------------------------

_mapped = False


def start_mappers() -> None:
    """Bind the dataclasses to their tables.  Safe to call more than once."""
    global _mapped
    if _mapped:
        return
    mapper_registry.map_imperatively(Team, teams)
    mapper_registry.map_imperatively(User, users)
    mapper_registry.map_imperatively(Equipment, equipment)
    mapper_registry.map_imperatively(
        MaintenanceRequest,
        maintenance_requests,
        version_id_col=maintenance_requests.c.version_id,
    )
    mapper_registry.map_imperatively(RequestLog, request_logs)
    _mapped = True
