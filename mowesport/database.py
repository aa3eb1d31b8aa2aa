"""
Database engine, session management, and base model class.

This module sets up SQLAlchemy 2.0 with async support. Key components:

  - engine: The async database engine (connection pool for production DBs)
  - AsyncSessionLocal: Factory for creating async database sessions
  - Base: Declarative base class that all ORM models inherit from
  - UTCDateTime: Column type that always hands back timezone-aware UTC values
  - get_db(): FastAPI dependency that provides a session per request

Session lifecycle:
  Each API request gets its own session via get_db(). The session commits on
  success and on committable domain errors (a rejected login still has to
  persist its failed-attempt counter and audit event), and rolls back on
  timeouts, integrity failures and anything unexpected.
"""

from datetime import datetime, timezone

from sqlalchemy import DateTime, event
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy.types import TypeDecorator

from mowesport.config import settings
from mowesport.exceptions import MoweSportError


def enable_sqlite_savepoints(async_engine) -> None:
    """
    Let SAVEPOINT work on SQLite.

    The sqlite3 driver opens transactions lazily and does not know about
    savepoints, so a SAVEPOINT issued first would start (and RELEASE would
    end) the outer transaction. Turning off the driver's own BEGIN and
    emitting it from the engine keeps begin_nested() properly nested.
    """

    @event.listens_for(async_engine.sync_engine, "connect")
    def _disable_driver_begin(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(async_engine.sync_engine, "begin")
    def _emit_begin(conn):
        conn.exec_driver_sql("BEGIN")


# echo=True in debug mode logs all SQL statements
engine = create_async_engine(
    settings.DATABASE_URL,
    echo=settings.DEBUG,
)
if engine.dialect.name == "sqlite":
    enable_sqlite_savepoints(engine)


# expire_on_commit=False prevents lazy-load errors after commit; accessing
# attributes on a committed object would otherwise trigger a synchronous DB
# call, which fails in async context.
AsyncSessionLocal = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


class UTCDateTime(TypeDecorator):
    """
    DateTime column normalized to UTC.

    SQLite has no timezone storage and returns naive values; lockout and
    expiry checks compare against aware datetimes, so values are converted
    to UTC on the way in and tagged as UTC on the way out.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy ORM models."""
    pass


async def get_db():
    """
    FastAPI dependency that provides a database session.

    Usage in a route:
        @router.get("/items")
        async def list_items(db: AsyncSession = Depends(get_db)):
            ...
    """
    async with AsyncSessionLocal() as session:
        try:
            yield session
            await session.commit()
        except MoweSportError as exc:
            # Domain errors (e.g. a wrong password) commit the session so the
            # failed-attempt counter and the audit trail are persisted.
            if exc.commit_session:
                await session.commit()
            else:
                await session.rollback()
            raise
        except Exception:
            await session.rollback()
            raise


def enum_values(enum_cls) -> list[str]:
    """values_callable for sa.Enum so the column stores "city_admin", not "CITY_ADMIN"."""
    return [member.value for member in enum_cls]
