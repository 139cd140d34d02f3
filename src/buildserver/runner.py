from __future__ import annotations

import logging
import os
import shlex
import subprocess
import threading
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Callable, Dict, IO, List, Mapping, Optional, Sequence, Tuple


LOGGER = logging.getLogger("buildserver.runner")

STDOUT = "stdout"
STDERR = "stderr"

LineSink = Callable[[str, str], None]
"""Receives ``(stream, line)`` for every captured line; called from reader threads."""


@dataclass
class ProcessResult:
    command: str
    exit_code: int
    stdout: str
    stderr: str

    @property
    def success(self) -> bool:
        return self.exit_code == 0


def format_command(command: Sequence[str]) -> str:
    return " ".join(shlex.quote(part) for part in command)


def split_command(command_line: str) -> Tuple[str, List[str]]:
    """Split a configured build command into executable and arguments."""
    parts = shlex.split(command_line, posix=os.name != "nt")
    if not parts:
        raise ValueError("build command must not be empty")
    executable, args = parts[0], parts[1:]
    if os.name == "nt" and executable == "npm":
        # npm is a batch shim on Windows and cannot be spawned directly.
        return "cmd", ["/c", "npm", *args]
    return executable, args


def merge_environment(env: Optional[Mapping[str, str]]) -> Optional[Dict[str, str]]:
    if env is None:
        return None
    merged = os.environ.copy()
    merged.update(env)
    return merged


class _Transcript:
    """Line-oriented transcript file shared by the two reader threads of one process."""

    def __init__(self, handle: Optional[IO[str]], path: Optional[Path] = None) -> None:
        self._handle = handle
        self._path = path
        self._lock = threading.Lock()

    @classmethod
    def open(cls, path: Optional[Path], command: str, cwd: Path) -> "_Transcript":
        if path is None:
            return cls(None)
        path = Path(path)
        try:
            handle = path.open("w", encoding="utf-8")
            handle.write(f"=== Build Log for {command} ===\n")
            handle.write(f"Dir: {cwd}\n")
            handle.write(f"Time: {datetime.now():%Y-%m-%d %H:%M:%S}\n")
            handle.write("=========================================\n")
            handle.flush()
        except OSError as exc:
            LOGGER.warning("Could not open transcript %s: %s", path, exc)
            return cls(None)
        return cls(handle, path)

    def write(self, line: str) -> None:
        with self._lock:
            if self._handle is None:
                return
            try:
                self._handle.write(line + "\n")
                self._handle.flush()
            except OSError as exc:
                LOGGER.warning("Transcript %s stopped accepting output: %s", self._path, exc)
                self._handle.close()
                self._handle = None

    def close(self) -> None:
        with self._lock:
            if self._handle is not None:
                self._handle.close()
                self._handle = None


class ProcessRunner:
    """
    Execute one external command and capture its output line by line.

    Both streams are drained on dedicated threads so a chatty build cannot
    dead-lock on a full pipe, and everything read before a crash is kept.
    Launch failures are returned as a result with exit code ``-1`` instead of
    being raised, so one broken project never aborts a batch.
    """

    def __init__(self, line_sink: Optional[LineSink] = None, encoding: str = "utf-8") -> None:
        self._line_sink = line_sink
        self._encoding = encoding

    def run(
        self,
        command: str,
        args: Sequence[str] = (),
        *,
        cwd: Path,
        env: Optional[Mapping[str, str]] = None,
        log_file: Optional[Path] = None,
        line_sink: Optional[LineSink] = None,
    ) -> ProcessResult:
        if not command:
            raise ValueError("command must be a non-empty executable name or path")

        argv = [command, *args]
        display = format_command(argv)
        working_dir = Path(cwd).resolve()
        sink = line_sink or self._line_sink
        transcript = _Transcript.open(log_file, display, working_dir)

        try:
            try:
                process = subprocess.Popen(
                    argv,
                    cwd=str(working_dir),
                    env=merge_environment(env),
                    stdout=subprocess.PIPE,
                    stderr=subprocess.PIPE,
                    text=True,
                    encoding=self._encoding,
                    errors="replace",
                    bufsize=1,
                )
            except OSError as exc:
                LOGGER.error("Error running %s: %s", display, exc)
                transcript.write(f"EXCEPTION: {exc}")
                return ProcessResult(command=display, exit_code=-1, stdout="", stderr=str(exc))

            stdout_lines: List[str] = []
            stderr_lines: List[str] = []
            readers = [
                threading.Thread(
                    target=self._pump,
                    args=(process.stdout, STDOUT, stdout_lines, transcript, sink),
                    name=f"stdout-{process.pid}",
                    daemon=True,
                ),
                threading.Thread(
                    target=self._pump,
                    args=(process.stderr, STDERR, stderr_lines, transcript, sink),
                    name=f"stderr-{process.pid}",
                    daemon=True,
                ),
            ]
            for reader in readers:
                reader.start()
            exit_code = process.wait()
            for reader in readers:
                reader.join()

            LOGGER.debug("%s exited with %s", display, exit_code)
            return ProcessResult(
                command=display,
                exit_code=exit_code,
                stdout=_join_lines(stdout_lines),
                stderr=_join_lines(stderr_lines),
            )
        finally:
            transcript.close()

    @staticmethod
    def _pump(
        stream: IO[str],
        name: str,
        buffer: List[str],
        transcript: _Transcript,
        sink: Optional[LineSink],
    ) -> None:
        tag = "[OUT]" if name == STDOUT else "[ERR]"
        with stream:
            for raw in stream:
                line = raw.rstrip("\r\n")
                buffer.append(line)
                transcript.write(f"{tag} {line}")
                if sink is None:
                    continue
                try:
                    sink(name, line)
                except Exception:
                    LOGGER.exception("Line sink rejected %s output", name)


def _join_lines(lines: List[str]) -> str:
    return "".join(f"{line}\n" for line in lines)
