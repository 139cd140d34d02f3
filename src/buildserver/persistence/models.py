"""SQLAlchemy models for the run ledger and the additive schema upgrade."""

from __future__ import annotations

import datetime as dt
import logging
from contextlib import contextmanager
from typing import Any, Generator, List, Optional

from sqlalchemy import Boolean, DateTime, ForeignKey, Integer, MetaData, String, Text, inspect, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import DeclarativeBase, Mapped, Session, mapped_column, relationship, sessionmaker

from ..schemas import RunStatus


LOGGER = logging.getLogger("buildserver.persistence")

metadata_obj = MetaData()


class Base(DeclarativeBase):
    metadata = metadata_obj


class BuildRun(Base):
    __tablename__ = "build_runs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    started_at: Mapped[dt.datetime] = mapped_column(DateTime, index=True)
    completed_at: Mapped[Optional[dt.datetime]] = mapped_column(DateTime, nullable=True)
    status: Mapped[str] = mapped_column(String(20), default=RunStatus.RUNNING.value, index=True)
    success: Mapped[bool] = mapped_column(Boolean, default=False)
    duration_ms: Mapped[int] = mapped_column(Integer, default=0)
    total_projects: Mapped[int] = mapped_column(Integer, default=0)
    successful_projects: Mapped[int] = mapped_column(Integer, default=0)
    failed_projects: Mapped[int] = mapped_column(Integer, default=0)
    log_path: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    error_log_path: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    log_content: Mapped[Optional[str]] = mapped_column(Text, nullable=True, deferred=True)

    projects: Mapped[List["ProjectRun"]] = relationship(
        "ProjectRun", back_populates="run", order_by="ProjectRun.id"
    )


class ProjectRun(Base):
    __tablename__ = "project_runs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    run_id: Mapped[int] = mapped_column(ForeignKey("build_runs.id"), index=True)
    project_name: Mapped[str] = mapped_column(String(255))
    project_path: Mapped[str] = mapped_column(Text)
    success: Mapped[bool] = mapped_column(Boolean, default=False)
    exit_code: Mapped[int] = mapped_column(Integer, default=0)
    command: Mapped[str] = mapped_column(Text, default="")
    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    node_version: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    log_content: Mapped[Optional[str]] = mapped_column(Text, nullable=True, deferred=True)
    created_at: Mapped[Optional[dt.datetime]] = mapped_column(DateTime, nullable=True, default=dt.datetime.now)

    run: Mapped[BuildRun] = relationship("BuildRun", back_populates="projects")


def create_session_factory(engine: Engine) -> sessionmaker[Session]:
    """Create the schema if needed and return a session factory bound to *engine*."""

    Base.metadata.create_all(engine)
    upgrade_schema(engine)
    return sessionmaker(bind=engine, expire_on_commit=False, class_=Session)


@contextmanager
def session_scope(session_factory: sessionmaker[Session]) -> Generator[Session, None, None]:
    """Provide a transactional scope around a series of operations."""

    session = session_factory()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def upgrade_schema(engine: Engine) -> List[str]:
    """
    Add model columns that are missing from tables created by older releases.

    Only ``ALTER TABLE ... ADD COLUMN`` is issued; nothing is dropped or rewritten
    apart from back-filling the run status of rows that predate the column.
    Returns the ``table.column`` names that were added.
    """
    added: List[str] = []
    inspector = inspect(engine)
    live_columns = {
        table.name: {column["name"] for column in inspector.get_columns(table.name)}
        for table in Base.metadata.sorted_tables
    }
    with engine.begin() as conn:
        for table in Base.metadata.sorted_tables:
            for column in table.columns:
                if column.name in live_columns[table.name]:
                    continue
                ddl = f"ALTER TABLE {table.name} ADD COLUMN {column.name} {column.type.compile(dialect=engine.dialect)}"
                default = column.default.arg if column.default is not None and column.default.is_scalar else None
                if default is not None:
                    ddl += f" DEFAULT {_sql_literal(default)}"
                conn.execute(text(ddl))
                added.append(f"{table.name}.{column.name}")
                LOGGER.info("Added column %s.%s", table.name, column.name)

        if "build_runs.status" in added:
            conn.execute(
                text(
                    "UPDATE build_runs SET status = CASE WHEN success = 1 THEN :ok ELSE :failed END"
                ),
                {"ok": RunStatus.SUCCEEDED.value, "failed": RunStatus.FAILED.value},
            )
    return added


def _sql_literal(value: Any) -> str:
    if isinstance(value, bool):
        return "1" if value else "0"
    if isinstance(value, (int, float)):
        return str(value)
    return "'" + str(value).replace("'", "''") + "'"


__all__ = [
    "Base",
    "BuildRun",
    "ProjectRun",
    "create_session_factory",
    "session_scope",
    "upgrade_schema",
]
