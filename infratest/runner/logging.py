# Where: infratest/runner/logging.py
# What: Log sinks, subprocess streaming helpers and logging setup.
# Why: Ensure full command logs are always persisted while keeping console output optional.
from __future__ import annotations

import functools
import logging
import logging.config
import os
import string
import subprocess
import threading
import time
from collections import deque
from pathlib import Path
from typing import Callable, Iterator, TextIO

import yaml

from infratest.runner.utils import PACKAGE_ROOT

DEFAULT_LOGGING_CONFIG = PACKAGE_ROOT / "logging.yml"

_CONSOLE_LOCK = threading.Lock()
_SECRET_MARKERS = ("SECRET", "PASSWORD", "TOKEN", "SESSION", "PRIVATE_KEY", "ACCESS_KEY")
_WATCH_INTERVAL = 0.2


def setup_logging(config_path: str | Path | None = None, *, level: str | None = None) -> None:
    """
    Load the YAML config, substitute environment variables, and initialize logging.
    """
    path = Path(config_path) if config_path else DEFAULT_LOGGING_CONFIG
    mapping = os.environ.copy()
    if level:
        mapping["LOG_LEVEL"] = level.upper()
    mapping.setdefault("LOG_LEVEL", "INFO")

    if not path.exists():
        logging.basicConfig(level=mapping["LOG_LEVEL"])
        return

    with open(path, "r", encoding="utf-8") as f:
        # Supports ${LOG_LEVEL} format.
        template = string.Template(f.read())
    config = yaml.safe_load(template.safe_substitute(mapping))
    logging.config.dictConfig(config)


def safe_print(message: str = "", *, prefix: str | None = None) -> None:
    line = f"{prefix} {message}" if prefix else message
    with _CONSOLE_LOCK:
        print(line, flush=True)


class LogSink:
    """Per-scenario log file. Worker and streaming threads may write concurrently."""

    def __init__(self, path: Path) -> None:
        self.path = path
        self.lines_written = 0
        self._handle: TextIO | None = None
        self._write_lock = threading.Lock()

    def open(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._handle = open(self.path, "w", encoding="utf-8")

    def close(self) -> None:
        handle, self._handle = self._handle, None
        if handle is not None:
            handle.close()

    def __enter__(self) -> LogSink:
        self.open()
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def write_line(self, line: str) -> None:
        with self._write_lock:
            if self._handle is None:
                raise RuntimeError(f"Log {self.path} is not open")
            self._handle.write(line + "\n")
            self._handle.flush()
            self.lines_written += 1


def make_prefix_printer(
    label: str, phase: str | None = None, *, width: int = 0
) -> Callable[[str], None]:
    prefix = f"[{label.ljust(width)}]"
    if phase:
        prefix += f"[{phase}] |"
    return functools.partial(safe_print, prefix=prefix)


def emit(log: LogSink, printer: Callable[[str], None] | None, message: str) -> None:
    log.write_line(message)
    if printer:
        printer(message)


class CommandResult:
    def __init__(
        self,
        returncode: int,
        tail: list[str],
        timed_out: bool = False,
        cancelled: bool = False,
    ) -> None:
        self.returncode = returncode
        self.tail = tail
        self.timed_out = timed_out
        self.cancelled = cancelled

    @property
    def output(self) -> str:
        return "\n".join(self.tail)


class _Watchdog:
    """Terminates a process when its time budget runs out or the suite is cancelled."""

    def __init__(
        self,
        proc: subprocess.Popen,
        timeout: float | None,
        cancel: threading.Event | None = None,
    ) -> None:
        self.fired = False
        self.cancelled = False
        self._proc = proc
        self._cancel = cancel
        self._expires = None if timeout is None else time.monotonic() + timeout
        self._done = threading.Event()
        if timeout is not None or cancel is not None:
            threading.Thread(target=self._watch, name="watchdog", daemon=True).start()

    def _watch(self) -> None:
        while not self._done.wait(self._next_wait()):
            if self._cancel is not None and self._cancel.is_set():
                self.cancelled = True
            elif self._expires is not None and time.monotonic() >= self._expires:
                self.fired = True
            else:
                continue
            # SIGTERM lets terraform release its state lock before exiting.
            self._proc.terminate()
            return

    def _next_wait(self) -> float:
        if self._expires is None:
            return _WATCH_INTERVAL
        return max(0.0, min(_WATCH_INTERVAL, self._expires - time.monotonic()))

    def cancel(self) -> None:
        self._done.set()


def _output_lines(proc: subprocess.Popen) -> Iterator[str]:
    assert proc.stdout is not None
    for raw_line in proc.stdout:
        yield raw_line.rstrip("\n")


def run_and_stream(
    cmd: list[str],
    *,
    cwd: Path,
    env: dict[str, str],
    log: LogSink,
    printer: Callable[[str], None] | None = None,
    on_line: Callable[[str], None] | None = None,
    timeout: float | None = None,
    cancel: threading.Event | None = None,
    tail_lines: int = 200,
) -> CommandResult:
    """Run a command, copying every output line to the log and any listeners.

    Only the last ``tail_lines`` lines are kept in memory; they become the
    failure text the retry classifier sees.

    The child runs in its own session so a terminal Ctrl-C reaches only this
    process. The child is terminated once ``cancel`` is set; without a cancel
    event the command runs to completion, which destroy relies on.
    """
    emit(log, printer, "$ " + " ".join(_redact_cmd(cmd)))
    proc = subprocess.Popen(
        cmd,
        cwd=str(cwd),
        env=env,
        stdin=subprocess.DEVNULL,
        stdout=subprocess.PIPE,
        stderr=subprocess.STDOUT,
        text=True,
        bufsize=1,
        errors="replace",
        start_new_session=True,
    )
    watchdog = _Watchdog(proc, timeout, cancel)
    listeners = [fn for fn in (log.write_line, on_line, printer) if fn is not None]
    tail: deque[str] = deque(maxlen=tail_lines)
    try:
        for line in _output_lines(proc):
            tail.append(line)
            for listener in listeners:
                listener(line)
        returncode = proc.wait()
    finally:
        watchdog.cancel()
    return CommandResult(
        returncode, list(tail), timed_out=watchdog.fired, cancelled=watchdog.cancelled
    )


def _redact_cmd(cmd: list[str]) -> list[str]:
    return [_redact_secret_token(token) for token in cmd]


def _redact_secret_token(token: str) -> str:
    key, sep, _value = token.partition("=")
    if not sep:
        return token
    name = key.strip("\"'").upper()
    if any(marker in name for marker in _SECRET_MARKERS):
        return f"{key}=***"
    return token
