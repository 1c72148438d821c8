"""Async database engine, session factory and dialect-aware upserts."""

from collections.abc import AsyncIterator, Callable, Sequence
from datetime import datetime, timezone

from sqlalchemy import JSON
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from tripdesk.config import settings

# JSON on SQLite, JSONB on PostgreSQL
JSONDocument = JSON().with_variant(JSONB(), "postgresql")

engine = create_async_engine(settings.database_url, echo=settings.database_echo)
async_session_factory = async_sessionmaker(engine, expire_on_commit=False)


class Base(DeclarativeBase):
    pass


async def get_db() -> AsyncIterator[AsyncSession]:
    async with async_session_factory() as session:
        yield session


async def init_models() -> None:
    """Create all tables (development convenience; production uses alembic)."""
    import tripdesk.models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


def upsert(
    db: AsyncSession,
    table,
    values: dict,
    conflict_columns: Sequence[str],
    update_values: dict | Callable | None = None,
):
    """Build an INSERT ... ON CONFLICT statement for the session's dialect.

    With ``update_values`` None the statement ignores conflicting rows,
    otherwise it updates them with the given values (which may reference
    SQL expressions on the target table) or a callable receiving
    ``stmt.excluded`` and returning such a dict.
    """
    dialect = db.get_bind().dialect.name
    if dialect == "postgresql":
        stmt = postgresql.insert(table).values(**values)
    elif dialect == "sqlite":
        stmt = sqlite.insert(table).values(**values)
    else:
        raise NotImplementedError(f"Upsert not supported for dialect '{dialect}'")

    if update_values is None:
        return stmt.on_conflict_do_nothing(index_elements=list(conflict_columns))
    if callable(update_values):
        update_values = update_values(stmt.excluded)
    return stmt.on_conflict_do_update(index_elements=list(conflict_columns), set_=update_values)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)
