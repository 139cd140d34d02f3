from __future__ import annotations

import logging
import time
import traceback
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional, Sequence

from sqlalchemy.exc import SQLAlchemyError

from .config import ProjectSpec, Settings
from .dependencies import DependencyPreparer
from .journal import RunJournal
from .persistence.store import RunLedger
from .runner import ProcessResult, ProcessRunner, STDERR, split_command
from .schemas import ProjectResult, RunStatus, WorkflowResult
from .staging import ArtifactStager, StageStatus
from .toolchain import select_runtime


LOGGER = logging.getLogger("buildserver.orchestrator")


class BuildOrchestrator:
    """
    Drive one build-and-deploy run: link dependencies, build every publishable
    project in parallel, stage the artifacts and record the outcome.

    ``run_workflow`` never raises; the returned result's ``success`` flag is the
    only verdict callers should rely on.
    """

    def __init__(
        self,
        settings: Settings,
        ledger: Optional[RunLedger] = None,
        runner: Optional[ProcessRunner] = None,
        preparer: Optional[DependencyPreparer] = None,
        stager: Optional[ArtifactStager] = None,
    ) -> None:
        self._settings = settings
        self._ledger = ledger
        self._runner = runner or ProcessRunner()
        self._preparer = preparer or DependencyPreparer()
        self._stager = stager or ArtifactStager()
        self._logger = LOGGER

    @classmethod
    def from_settings(cls, settings: Settings) -> "BuildOrchestrator":
        ledger: Optional[RunLedger] = None
        try:
            ledger = RunLedger(settings.resolve_database_path())
            LOGGER.info("Database initialized at: %s", ledger.path)
        except (SQLAlchemyError, OSError) as exc:
            LOGGER.error("Failed to initialize database, runs will not be tracked: %s", exc)
        return cls(settings=settings, ledger=ledger)

    @property
    def settings(self) -> Settings:
        return self._settings

    @property
    def history(self) -> Optional[RunLedger]:
        """Ledger handle for history readers; ``None`` when the database is unavailable."""
        return self._ledger

    def run_workflow(self) -> WorkflowResult:
        settings = self._settings
        started_at = datetime.now()
        clock = time.monotonic()
        stamp = started_at.strftime("%Y%m%d_%H%M%S_%f")
        run_dir = settings.logs_dir / "builds" / f"build_{stamp}"
        journal = RunJournal(
            summary_path=run_dir / "_summary.log",
            error_path=settings.logs_dir / "errors" / f"error_{stamp}.log",
        )

        projects = settings.publish_projects()
        run_id = self._create_run(started_at, len(projects), journal)
        results: Dict[str, ProjectResult] = {}
        full_log: List[str] = []
        error: Optional[str] = None
        success = False

        try:
            journal.log("Starting Workflow...")
            if journal.log_path:
                journal.log(f"Build log: {journal.log_path}")

            journal.log("Step 1: Verify shared dependencies")
            self._prepare(projects, journal)

            journal.log("Step 2: Build")
            results.update(self._build(projects, run_dir, journal))
            if any(not result.success for result in results.values()):
                journal.log("Build failures detected. Proceeding to copy successful builds...")

            journal.log("Step 3: Copy Artifacts")
            settings.output_dir.mkdir(parents=True, exist_ok=True)
            self._stage(projects, journal)

            journal.log("Workflow Completed.")
            success = all(result.success for result in results.values())
            if not success:
                journal.log("Build failures detected!", error=True)
        except Exception as exc:
            self._logger.exception("Workflow failed")
            error = str(exc)
            success = False
            journal.log(f"Workflow Failed: {exc}", error=True)
            journal.log(f"Stack trace: {traceback.format_exc()}", error=True)
            full_log.append(f"\nFATAL ERROR: {exc}\n{traceback.format_exc()}")
        finally:
            ordered = self._complete_results(projects, results, error)
            full_log.insert(0, self._aggregate_log(ordered, journal))
            duration_ms = int((time.monotonic() - clock) * 1000)
            self._finalize(run_id, ordered, success, duration_ms, "".join(full_log), journal)
            journal.close()
            if journal.log_path:
                journal.log(f"Logs saved to: {journal.log_path}")
            if journal.error_log_path:
                journal.log(f"Error log saved to: {journal.error_log_path}")

        return WorkflowResult(
            success=success,
            status=RunStatus.SUCCEEDED if success else RunStatus.FAILED,
            run_id=run_id,
            build_results=ordered,
            full_log="".join(full_log),
            logs=list(journal.lines),
            error=error,
            log_path=journal.log_path,
            error_log_path=journal.error_log_path,
        )

    def _create_run(self, started_at: datetime, total: int, journal: RunJournal) -> Optional[int]:
        if self._ledger is None:
            return None
        try:
            run_id = self._ledger.create_run(started_at, total)
        except SQLAlchemyError as exc:
            journal.log(f"Warning: Failed to create build record: {exc}")
            return None
        self._logger.info("Build record created with ID: %s", run_id)
        return run_id

    def _prepare(self, projects: Sequence[ProjectSpec], journal: RunJournal) -> None:
        for project in projects:
            outcome = self._preparer.ensure_linked(project, self._settings.root_dir)
            journal.log(outcome.message)

    def _build(self, projects: Sequence[ProjectSpec], run_dir: Path, journal: RunJournal) -> Dict[str, ProjectResult]:
        if not projects:
            return {}
        workers = self._settings.max_workers or len(projects)
        with ThreadPoolExecutor(max_workers=min(workers, len(projects)), thread_name_prefix="build") as executor:
            futures = {
                project.name: executor.submit(self._build_project, project, run_dir, journal)
                for project in projects
            }
            return {name: future.result() for name, future in futures.items()}

    def _build_project(self, project: ProjectSpec, run_dir: Path, journal: RunJournal) -> ProjectResult:
        log_file = run_dir / f"{project.name}.log"
        try:
            runtime = select_runtime(project, self._settings.tool_root)
            if runtime.message:
                journal.log(runtime.message)
            executable, args = split_command(project.build_cmd)

            def forward(stream: str, line: str) -> None:
                suffix = " ERR" if stream == STDERR else ""
                self._logger.info("[%s%s] %s", project.name, suffix, line)

            result = self._runner.run(
                executable,
                args,
                cwd=project.source_dir(self._settings.root_dir),
                env=runtime.env,
                log_file=log_file,
                line_sink=forward,
            )
        except Exception as exc:
            self._logger.exception("Build task for %s failed", project.name)
            result = ProcessResult(command=project.build_cmd, exit_code=-1, stdout="", stderr=str(exc))
        journal.log(f"[{project.name}] Exit: {result.exit_code}")
        return _project_result(project, result, log_file)

    def _stage(self, projects: Sequence[ProjectSpec], journal: RunJournal) -> None:
        for project in projects:
            outcome = self._stager.stage(project, self._settings.root_dir, self._settings.output_dir)
            for message in outcome.messages:
                journal.log(message, error=outcome.status is StageStatus.FAILED and message.startswith("Error"))

    @staticmethod
    def _complete_results(
        projects: Sequence[ProjectSpec],
        results: Dict[str, ProjectResult],
        error: Optional[str],
    ) -> List[ProjectResult]:
        """Order results by configuration, marking projects that never built as failed."""
        ordered: List[ProjectResult] = []
        for project in projects:
            result = results.get(project.name)
            if result is None:
                reason = f"Build did not run: {error}" if error else "Build did not run"
                result = _project_result(
                    project, ProcessResult(command=project.build_cmd, exit_code=-1, stdout="", stderr=reason)
                )
            ordered.append(result)
        return ordered

    @staticmethod
    def _aggregate_log(results: Sequence[ProjectResult], journal: RunJournal) -> str:
        sections = ["=== BUILD LOGS ===\n"]
        for result in results:
            sections.append(f"--- Project: {result.name} ---\n")
            sections.append(f"> {result.command}\n")
            sections.append(f"{result.stdout}\n")
            if result.stderr:
                sections.append(f"[STDERR]: {result.stderr}\n")
                journal.log(f"Error in {result.name}: {result.stderr.strip()}", error=not result.success)
            if not result.success:
                journal.log(f"Build failed for {result.name} with exit code {result.exit_code}", error=True)
            sections.append("\n")
        return "".join(sections)

    def _finalize(
        self,
        run_id: Optional[int],
        results: Sequence[ProjectResult],
        success: bool,
        duration_ms: int,
        full_log: str,
        journal: RunJournal,
    ) -> None:
        if self._ledger is None or run_id is None:
            return

        for result in results:
            record_id = self._ledger.add_project_record(
                run_id,
                name=result.name,
                path=result.path,
                success=result.success,
                exit_code=result.exit_code,
                command=result.command,
                error_message=result.error_message,
                node_version=result.node_version,
                log_content=result.log_content(),
            )
            if record_id is None:
                journal.log(f"Warning: Failed to log project record to DB: {result.name}", error=True)

        successful = sum(1 for result in results if result.success)
        try:
            self._ledger.finalize_run(
                run_id,
                success=success,
                duration_ms=duration_ms,
                log_path=journal.log_path,
                error_log_path=journal.error_log_path,
                successful_projects=successful,
                failed_projects=len(results) - successful,
                log_content=full_log,
            )
        except (SQLAlchemyError, KeyError) as exc:
            self._logger.warning("Failed to update build record %s: %s", run_id, exc)
            return
        self._logger.info("Build record updated. Duration: %sms, Success: %s", duration_ms, success)


def _project_result(project: ProjectSpec, result: ProcessResult, log_file: Optional[Path] = None) -> ProjectResult:
    return ProjectResult(
        name=project.name,
        path=project.path,
        command=result.command,
        exit_code=result.exit_code,
        stdout=result.stdout,
        stderr=result.stderr,
        node_version=project.node_version,
        log_file=str(log_file) if log_file and log_file.exists() else None,
    )
