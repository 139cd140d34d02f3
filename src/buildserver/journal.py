from __future__ import annotations

import logging
import threading
from datetime import datetime
from pathlib import Path
from typing import IO, List, Optional


LOGGER = logging.getLogger("buildserver.orchestrator")


def _open_log(path: Path) -> Optional[IO[str]]:
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        return path.open("w", encoding="utf-8")
    except OSError as exc:
        LOGGER.warning("Failed to create log file %s: %s", path, exc)
        return None


class RunJournal:
    """
    Run-wide message log: kept in memory, mirrored to ``_summary.log`` and,
    for error messages only, to a separate error transcript.

    The error transcript is removed on close when nothing was written to it.
    """

    def __init__(self, summary_path: Optional[Path] = None, error_path: Optional[Path] = None) -> None:
        self.lines: List[str] = []
        self.has_errors = False
        self._lock = threading.Lock()
        self._summary_path = summary_path
        self._error_path = error_path
        self._summary = _open_log(summary_path) if summary_path else None
        self._errors = _open_log(error_path) if error_path else None
        self._summary_opened = self._summary is not None
        self._errors_opened = self._errors is not None

    @property
    def log_path(self) -> Optional[str]:
        return str(self._summary_path) if self._summary_opened else None

    @property
    def error_log_path(self) -> Optional[str]:
        if not self._errors_opened or not self.has_errors:
            return None
        return str(self._error_path)

    def log(self, message: str, error: bool = False) -> None:
        entry = f"{datetime.now():%Y-%m-%d %H:%M:%S} - {message}"
        with self._lock:
            self.lines.append(entry)
            if error:
                self.has_errors = True
            self._write(self._summary, entry)
            if error:
                self._write(self._errors, entry)
        if error:
            LOGGER.error(message)
        else:
            LOGGER.info(message)

    def close(self) -> None:
        with self._lock:
            for handle in (self._summary, self._errors):
                if handle is not None:
                    handle.close()
            self._summary = None
            self._errors = None
            if not self.has_errors and self._error_path is not None and self._error_path.exists():
                self._error_path.unlink()

    @staticmethod
    def _write(handle: Optional[IO[str]], entry: str) -> None:
        if handle is None:
            return
        try:
            handle.write(entry + "\n")
            handle.flush()
        except OSError as exc:
            LOGGER.warning("Could not write run log entry: %s", exc)
