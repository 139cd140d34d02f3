"""SQLite run ledger: build run headers plus per-project records."""
from __future__ import annotations

import logging
from datetime import datetime
from pathlib import Path
from typing import List, Optional

from sqlalchemy import case, create_engine, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.pool import NullPool

from ..exceptions import RecordNotFoundError
from ..schemas import BuildStatistics, ProjectRunSummary, RunStatus, RunSummary
from .models import BuildRun, ProjectRun, create_session_factory, session_scope


LOGGER = logging.getLogger("buildserver.persistence")


class RunLedger:
    """
    Persist build runs and their per-project records.

    Every method runs in its own short transaction on a fresh connection, so a
    history viewer can read while a run is writing without sharing state.
    """

    def __init__(self, db_path: Path, echo: bool = False) -> None:
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._engine = create_engine(
            f"sqlite:///{self._db_path}",
            echo=echo,
            poolclass=NullPool,
            connect_args={"timeout": 30},
        )
        self._session_factory = create_session_factory(self._engine)

    @property
    def path(self) -> Path:
        return self._db_path

    def create_run(self, started_at: datetime, total_projects: int) -> int:
        with session_scope(self._session_factory) as session:
            run = BuildRun(
                started_at=started_at,
                status=RunStatus.RUNNING.value,
                success=False,
                duration_ms=0,
                total_projects=total_projects,
                successful_projects=0,
                failed_projects=0,
            )
            session.add(run)
            session.flush()
            return int(run.id)

    def finalize_run(
        self,
        run_id: int,
        *,
        success: bool,
        duration_ms: int,
        log_path: Optional[str],
        error_log_path: Optional[str],
        successful_projects: int,
        failed_projects: int,
        log_content: Optional[str],
    ) -> None:
        with session_scope(self._session_factory) as session:
            run = session.get(BuildRun, run_id)
            if run is None:
                raise RecordNotFoundError("Run", run_id)
            run.status = (RunStatus.SUCCEEDED if success else RunStatus.FAILED).value
            run.success = success
            run.completed_at = datetime.now()
            run.duration_ms = duration_ms
            run.log_path = log_path
            run.error_log_path = error_log_path
            run.successful_projects = successful_projects
            run.failed_projects = failed_projects
            run.log_content = log_content

    def add_project_record(
        self,
        run_id: int,
        *,
        name: str,
        path: str,
        success: bool,
        exit_code: int,
        command: str,
        error_message: Optional[str] = None,
        node_version: Optional[str] = None,
        log_content: Optional[str] = None,
    ) -> Optional[int]:
        """Append one project record; returns ``None`` when the write failed."""
        try:
            with session_scope(self._session_factory) as session:
                record = ProjectRun(
                    run_id=run_id,
                    project_name=name,
                    project_path=path,
                    success=success,
                    exit_code=exit_code,
                    command=command,
                    error_message=error_message,
                    node_version=node_version,
                    log_content=log_content,
                )
                session.add(record)
                session.flush()
                return int(record.id)
        except SQLAlchemyError as exc:
            LOGGER.warning("Failed to record project %s for run %s: %s", name, run_id, exc)
            return None

    def list_recent(self, limit: int = 50) -> List[RunSummary]:
        with session_scope(self._session_factory) as session:
            runs = session.scalars(
                select(BuildRun).order_by(BuildRun.started_at.desc(), BuildRun.id.desc()).limit(limit)
            ).all()
            return [RunSummary.model_validate(run, from_attributes=True) for run in runs]

    def get_run(self, run_id: int) -> RunSummary:
        with session_scope(self._session_factory) as session:
            run = session.get(BuildRun, run_id)
            if run is None:
                raise RecordNotFoundError("Run", run_id)
            return RunSummary.model_validate(run, from_attributes=True)

    def list_project_records(self, run_id: int) -> List[ProjectRunSummary]:
        with session_scope(self._session_factory) as session:
            records = session.scalars(
                select(ProjectRun).where(ProjectRun.run_id == run_id).order_by(ProjectRun.id)
            ).all()
            return [ProjectRunSummary.model_validate(record, from_attributes=True) for record in records]

    def get_run_log(self, run_id: int) -> Optional[str]:
        """Return the aggregate log text; ``None`` means the run exists but stored no log."""
        with session_scope(self._session_factory) as session:
            row = session.execute(select(BuildRun.log_content).where(BuildRun.id == run_id)).one_or_none()
        if row is None:
            raise RecordNotFoundError("Run", run_id)
        return row[0]

    def get_project_log(self, record_id: int) -> Optional[str]:
        with session_scope(self._session_factory) as session:
            row = session.execute(select(ProjectRun.log_content).where(ProjectRun.id == record_id)).one_or_none()
        if row is None:
            raise RecordNotFoundError("Project record", record_id)
        return row[0]

    def get_statistics(self) -> BuildStatistics:
        finished = BuildRun.status != RunStatus.RUNNING.value
        query = select(
            func.count(BuildRun.id),
            func.sum(case((BuildRun.status == RunStatus.SUCCEEDED.value, 1), else_=0)),
            func.sum(case((BuildRun.status == RunStatus.FAILED.value, 1), else_=0)),
            func.sum(case((BuildRun.status == RunStatus.RUNNING.value, 1), else_=0)),
            func.avg(case((finished, BuildRun.duration_ms), else_=None)),
        )
        with session_scope(self._session_factory) as session:
            total, succeeded, failed, running, average = session.execute(query).one()
        return BuildStatistics(
            total_runs=total or 0,
            successful_runs=succeeded or 0,
            failed_runs=failed or 0,
            running_runs=running or 0,
            average_duration_ms=float(average or 0.0),
        )

    def dispose(self) -> None:
        self._engine.dispose()
