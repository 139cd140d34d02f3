"""
buildserver - parallel build-and-deploy orchestration for front-end projects.

The package exposes the orchestration engine, the SQLite run ledger and the
click entrypoint used to drive them from a terminal.
"""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("buildserver")
except PackageNotFoundError:  # pragma: no cover - fallback for source checkouts
    __version__ = "0.0.0"

__all__ = ["__version__"]
