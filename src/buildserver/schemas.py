"""Shared data models returned by the orchestrator and the run ledger."""
from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field


class RunStatus(str, Enum):
    """Lifecycle states tracked for a build run."""

    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class ProjectResult(BaseModel):
    """Outcome of one project's build process."""

    name: str
    path: str
    command: str
    exit_code: int
    stdout: str = ""
    stderr: str = ""
    node_version: Optional[str] = None
    log_file: Optional[str] = Field(default=None, description="Per-project transcript written during the build.")

    @property
    def success(self) -> bool:
        return self.exit_code == 0

    @property
    def error_message(self) -> Optional[str]:
        if self.success:
            return None
        return self.stderr or None

    def log_content(self) -> str:
        return (
            f"[CMD] {self.command}\n"
            f"[EXIT] {self.exit_code}\n"
            f"[STDOUT]\n{self.stdout}\n"
            f"[STDERR]\n{self.stderr}"
        )


class WorkflowResult(BaseModel):
    """Finalized result of one run; callers must inspect ``success``."""

    success: bool
    status: RunStatus
    run_id: Optional[int] = Field(default=None, description="Ledger id, absent when the run was untracked.")
    build_results: List[ProjectResult] = Field(default_factory=list)
    full_log: str = ""
    logs: List[str] = Field(default_factory=list)
    error: Optional[str] = None
    log_path: Optional[str] = None
    error_log_path: Optional[str] = None


class RunSummary(BaseModel):
    """Header projection of a stored run, without the aggregate log text."""

    id: int
    started_at: datetime
    completed_at: Optional[datetime] = None
    status: RunStatus
    success: bool
    duration_ms: int
    total_projects: int
    successful_projects: int
    failed_projects: int
    log_path: Optional[str] = None
    error_log_path: Optional[str] = None

    @property
    def in_progress(self) -> bool:
        return self.status is RunStatus.RUNNING


class ProjectRunSummary(BaseModel):
    """Per-project record of a stored run, without the captured log text."""

    id: int
    run_id: int
    project_name: str
    project_path: str
    success: bool
    exit_code: int
    command: str
    error_message: Optional[str] = None
    node_version: Optional[str] = None
    created_at: Optional[datetime] = None


class BuildStatistics(BaseModel):
    """Aggregate counters across every stored run."""

    total_runs: int = 0
    successful_runs: int = 0
    failed_runs: int = 0
    running_runs: int = 0
    average_duration_ms: float = 0.0
