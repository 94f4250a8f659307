from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from config import settings


def make_engine(url: str):
    if url.startswith("sqlite"):
        return create_engine(
            url,
            future=True,
            pool_pre_ping=True,
            connect_args={"check_same_thread": False},
        )
    return create_engine(
        url,
        future=True,
        pool_pre_ping=True,
        pool_size=5,
        max_overflow=10,
        pool_recycle=3600,  # Recycle connections after 1 hour
    )


def make_session_factory(engine) -> sessionmaker:
    # Objects stay readable after commit; use cases assemble DTOs from them.
    return sessionmaker(
        bind=engine,
        autoflush=False,
        expire_on_commit=False,
        future=True,
    )


engine = make_engine(settings.database_url)

# Create a fresh Session per unit of work; never share one across requests
SessionLocal = make_session_factory(engine)
