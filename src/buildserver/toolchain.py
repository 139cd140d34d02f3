"""Runtime version selection and installed tool discovery."""
from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Iterable, Optional

from .config import ProjectSpec
from .runner import ProcessRunner, split_command


LOGGER = logging.getLogger("buildserver.toolchain")

DEFAULT_TOOLS = ("node", "npm", "yarn", "pnpm")
NOT_FOUND = "Not Found"


@dataclass
class RuntimeSelection:
    env: Optional[Dict[str, str]]
    message: Optional[str] = None
    is_warning: bool = False


def select_runtime(project: ProjectSpec, tool_root: Optional[Path]) -> RuntimeSelection:
    """
    Resolve the environment override that puts the project's runtime version first on ``PATH``.

    Versions are looked up nvm-style as ``<tool_root>/v<version>``.
    """
    if not project.node_version:
        return RuntimeSelection(env=None)

    if tool_root is None:
        return RuntimeSelection(
            env=None,
            message=f"Warning: Node version specified ({project.node_version}) but no tool root is configured.",
            is_warning=True,
        )

    version_dir = Path(tool_root) / f"v{project.node_version.lstrip('v')}"
    if not version_dir.is_dir():
        return RuntimeSelection(
            env=None,
            message=f"Warning: Node version v{project.node_version} not found in tool root: {version_dir}",
            is_warning=True,
        )

    current_path = os.environ.get("PATH", "")
    return RuntimeSelection(
        env={"PATH": f"{version_dir}{os.pathsep}{current_path}" if current_path else str(version_dir)},
        message=f"[{project.name}] Using specific Node: {version_dir}",
    )


def probe_tool_versions(
    runner: ProcessRunner,
    tools: Iterable[str] = DEFAULT_TOOLS,
    cwd: Optional[Path] = None,
) -> Dict[str, str]:
    """Run ``<tool> --version`` for each tool; unavailable tools map to ``Not Found``."""
    versions: Dict[str, str] = {}
    for tool in tools:
        executable, args = split_command(f"{tool} --version")
        result = runner.run(executable, args, cwd=cwd or Path.cwd())
        if result.success and result.stdout.strip():
            versions[tool] = result.stdout.strip().splitlines()[0]
        else:
            LOGGER.debug("%s unavailable: %s", tool, result.stderr.strip())
            versions[tool] = NOT_FOUND
    return versions
