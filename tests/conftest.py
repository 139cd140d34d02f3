from __future__ import annotations

import shlex
import sys
from pathlib import Path
from typing import Callable, List

import pytest

from buildserver.config import ProjectSpec, Settings


def python_command(code: str) -> str:
    """Build-command string that runs *code* with the current interpreter."""
    return f"{shlex.quote(sys.executable)} -c {shlex.quote(code)}"


WRITE_INDEX = (
    "import pathlib\n"
    "dist = pathlib.Path('dist')\n"
    "dist.mkdir(exist_ok=True)\n"
    "(dist / 'index.html').write_text('<h1>ok</h1>')\n"
    "print('built index.html')\n"
)
SYNTAX_ERROR = "import sys\nsys.stderr.write('syntax error\\n')\nsys.exit(1)\n"


@pytest.fixture()
def py_command() -> Callable[[str], str]:
    return python_command


@pytest.fixture()
def make_settings(tmp_path: Path) -> Callable[..., Settings]:
    def _make(projects: List[ProjectSpec], **overrides) -> Settings:
        root = tmp_path / "src"
        for project in projects:
            project.source_dir(root).mkdir(parents=True, exist_ok=True)
        values = {
            "root_dir": root,
            "output_dir": tmp_path / "out",
            "data_dir": tmp_path / "var",
            "projects": projects,
        }
        values.update(overrides)
        return Settings(**values)

    return _make
