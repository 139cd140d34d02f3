from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from enum import Enum
from pathlib import Path

from .config import ProjectSpec


LOGGER = logging.getLogger("buildserver.dependencies")


class LinkStatus(str, Enum):
    SKIPPED = "skipped"
    PRESENT = "present"
    LINKED = "linked"
    MISSING_TARGET = "missing_target"
    FAILED = "failed"


@dataclass
class LinkOutcome:
    project: str
    status: LinkStatus
    message: str

    @property
    def is_warning(self) -> bool:
        return self.status in (LinkStatus.MISSING_TARGET, LinkStatus.FAILED)


class DependencyPreparer:
    """Link a shared dependency directory (usually ``node_modules``) into each project."""

    def ensure_linked(self, project: ProjectSpec, root_dir: Path) -> LinkOutcome:
        target = project.shared_deps_path(root_dir)
        if target is None:
            return LinkOutcome(project.name, LinkStatus.SKIPPED, f"No shared dependencies configured for {project.name}")

        link_path = project.link_path(root_dir)
        # is_symlink() also catches dangling links, which exists() reports as absent.
        if link_path.exists() or link_path.is_symlink():
            LOGGER.info("%s already exists for %s", project.link_name, project.name)
            return LinkOutcome(project.name, LinkStatus.PRESENT, f"{project.link_name} already exists for {project.name}")

        if not target.is_dir():
            LOGGER.warning("Target %s not found: %s", project.link_name, target)
            return LinkOutcome(
                project.name,
                LinkStatus.MISSING_TARGET,
                f"Warning: Target {project.link_name} not found: {target}",
            )

        LOGGER.info("Creating symlink: %s -> %s", link_path, target)
        try:
            os.symlink(target.resolve(), link_path, target_is_directory=True)
        except OSError as exc:
            LOGGER.warning("Failed to create symlink for %s: %s", project.name, exc)
            return LinkOutcome(
                project.name,
                LinkStatus.FAILED,
                f"Warning: Failed to create symlink for {project.name}: {exc}",
            )
        return LinkOutcome(
            project.name,
            LinkStatus.LINKED,
            f"Symlink created successfully for {project.name}: {link_path} -> {target}",
        )
