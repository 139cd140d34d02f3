"""Exceptions raised by the buildserver package."""
from __future__ import annotations


class BuildServerError(Exception):
    """Base class for errors surfaced to callers of the package."""


class ConfigError(BuildServerError):
    """Raised when a configuration file cannot be read or validated."""


class RecordNotFoundError(BuildServerError, KeyError):
    """Raised when a ledger lookup targets an id that does not exist."""

    def __init__(self, kind: str, record_id: int) -> None:
        super().__init__(f"{kind} {record_id} not found")
        self.kind = kind
        self.record_id = record_id

    def __str__(self) -> str:
        return self.args[0]
