"""
main.py

Entry point for the Maintenance Tracker API.

Wires the SQLAlchemy infrastructure into the FastAPI app and starts uvicorn.

Usage
-----
    # Option 1 — run directly
    python main.py

    # Option 2 — run via uvicorn CLI (recommended for development)
    uvicorn main:app --reload --port 8000

Configuration comes from environment variables or a .env file
(DATABASE_URL, LOG_LEVEL, LOG_JSON, BOOTSTRAP_ADMIN_ID, ...); see config.py.

Once running, open your browser at:
    http://localhost:8000/docs      ← Swagger UI  (try every endpoint interactively)
    http://localhost:8000/redoc     ← ReDoc
    http://localhost:8000/health    ← liveness check

Quick-start walkthrough (use Swagger UI or curl)
-------------------------------------------------
On first start the schema is created and an administrator is seeded with
BOOTSTRAP_ADMIN_ID (default 00000000-0000-0000-0000-000000000001).
Send it as the token:  Authorization: Bearer <user-id>

1.  POST  /api/v1/teams                          — create a team
2.  POST  /api/v1/users                          — add a MANAGER and a TECHNICIAN to it
3.  POST  /api/v1/equipment                      — register equipment for the team
4.  POST  /api/v1/requests                       — open a CORRECTIVE request (as manager)
5.  POST  /api/v1/requests/{id}/assign           — assign the technician
6.  POST  /api/v1/requests/{id}/complete         — technician records the hours
7.  GET   /api/v1/requests/{id}/logs             — NEW → IN_PROGRESS → REPAIRED

Authentication note
-------------------
The default get_current_actor dependency expects the raw user UUID as the
Bearer token.  This is intentional for easy local testing; replace it with
a real token implementation before going to production.
"""

import uvicorn

from api import app, get_uow
from config import settings
from db import SessionLocal
from infrastructure import SqlAlchemyUnitOfWork


# ---------------------------------------------------------------------------
# Wire the concrete Unit of Work into the FastAPI dependency system.
# Tests override get_uow with a unit of work bound to their own engine.
# ---------------------------------------------------------------------------

app.dependency_overrides[get_uow] = lambda: SqlAlchemyUnitOfWork(SessionLocal)


if __name__ == "__main__":
    uvicorn.run(
        "main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.environment == "dev",
        log_level=settings.log_level.lower(),
    )
