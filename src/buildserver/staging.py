from __future__ import annotations

import logging
import shutil
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import List

from .config import ProjectSpec


LOGGER = logging.getLogger("buildserver.staging")


class StageStatus(str, Enum):
    COPIED = "copied"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass
class StageOutcome:
    project: str
    status: StageStatus
    source: Path
    destination: Path
    messages: List[str] = field(default_factory=list)


class ArtifactStager:
    """Copy a project's build output into the shared output tree, grouped by category."""

    def stage(self, project: ProjectSpec, root_dir: Path, output_dir: Path) -> StageOutcome:
        source = project.dist_path(root_dir)
        destination = project.destination(output_dir)
        outcome = StageOutcome(project.name, StageStatus.SKIPPED, source, destination)

        project_dir = project.source_dir(root_dir)
        if not project_dir.is_dir():
            LOGGER.warning("Project path not found: %s", project_dir)
            outcome.messages.append(f"Warning: Project path not found: {project_dir}")

        if not source.is_dir():
            LOGGER.warning("Dist directory not found: %s", source)
            outcome.messages.append(f"Warning: Dist directory not found: {source}")
            return outcome

        LOGGER.info("Copying %s to %s", source, destination)
        outcome.messages.append(f"Copying {source} to {destination}")
        try:
            destination.parent.mkdir(parents=True, exist_ok=True)
            shutil.copytree(source, destination, dirs_exist_ok=True)
        except shutil.Error as exc:
            # copytree keeps going past per-file failures and reports them together.
            failures = exc.args[0] if exc.args and isinstance(exc.args[0], list) else [exc]
            for failure in failures:
                LOGGER.error("Copy failed for %s: %s", project.name, failure)
                outcome.messages.append(f"Error: Copy failed for {project.name}: {failure}")
            outcome.status = StageStatus.FAILED
            return outcome
        except OSError as exc:
            LOGGER.error("Copy failed for %s: %s", project.name, exc)
            outcome.messages.append(f"Error: Copy failed for {project.name}: {exc}")
            outcome.status = StageStatus.FAILED
            return outcome

        outcome.status = StageStatus.COPIED
        return outcome
