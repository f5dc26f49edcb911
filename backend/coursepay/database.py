"""
Database Engine & Session Management
SQLAlchemy setup with dependency injection for FastAPI.
"""
import os
from contextlib import contextmanager

from sqlalchemy import create_engine
from sqlalchemy.exc import DBAPIError, OperationalError, TimeoutError as PoolTimeoutError
from sqlalchemy.orm import sessionmaker, declarative_base

from coursepay.config import get_settings
from coursepay.exceptions import StorageUnavailable

settings = get_settings()


def engine_options(database_url: str, timeout: float) -> dict:
    """Keyword arguments for ``create_engine`` bounding every storage wait by ``timeout`` seconds.

    SQLite: the busy-wait on a locked database file.
    PostgreSQL: connect, pool checkout, each statement and each lock wait.
    Others: connect and pool checkout.
    """
    if database_url.startswith("sqlite"):
        # check_same_thread=False is required for SQLite under FastAPI's thread pool
        return {"connect_args": {"check_same_thread": False, "timeout": timeout}}

    connect_args = {"connect_timeout": max(1, int(timeout))}
    if database_url.startswith("postgresql"):
        timeout_ms = int(timeout * 1000)
        connect_args["options"] = f"-c statement_timeout={timeout_ms} -c lock_timeout={timeout_ms}"

    return {
        "pool_pre_ping": True,
        "pool_timeout": timeout,
        "connect_args": connect_args,
    }


def build_engine(database_url: str, timeout: float, echo: bool = False):
    """Create an engine whose storage calls are time-bounded (see ``engine_options``)."""
    if database_url.startswith("sqlite"):
        path = database_url.replace("sqlite:///", "")
        if path and path != ":memory:":
            os.makedirs(os.path.dirname(path) or ".", exist_ok=True)

    return create_engine(database_url, echo=echo, **engine_options(database_url, timeout))


engine = build_engine(settings.DATABASE_URL, settings.STORAGE_TIMEOUT_SECONDS, echo=settings.DEBUG)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()


def get_db():
    """FastAPI dependency: yields a database session, auto-closes on finish."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def storage_errors(operation: str):
    """Translate connectivity failures and timeouts from the storage layer into StorageUnavailable.

    A statement or lock timeout surfaces from the driver as OperationalError.
    """
    try:
        yield
    except (OperationalError, PoolTimeoutError) as e:
        raise StorageUnavailable(f"Storage unavailable during {operation}") from e
    except DBAPIError as e:
        if e.connection_invalidated:
            raise StorageUnavailable(f"Storage connection lost during {operation}") from e
        raise


def init_db(bind=None):
    """Create all tables. Called once at application startup."""
    from coursepay.models import payment as _payment_model          # noqa: F401
    from coursepay.models import enrollment as _enrollment_model    # noqa: F401
    from coursepay.models import audit as _audit_model              # noqa: F401

    Base.metadata.create_all(bind=bind or engine)
