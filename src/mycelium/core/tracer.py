"""Trace logging: structured per-command entries written as JSON lines.

A Tracer is an explicit context object: open it, hand the TraceLogger it
creates to the operations that should be traced, close it when done.
Nothing is kept at module level, so tests can run isolated tracers.

    with Tracer() as tracer:
        trace = tracer.create_trace("migrate")
        await execute_migration(plan, trace=trace)
"""

import json
import logging
import secrets
from datetime import datetime, timezone
from pathlib import Path
from typing import IO, Any

from mycelium.config import settings

logger = logging.getLogger("mycelium.tracer")

_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "error": logging.ERROR,
}


class TraceLogger:
    """Logger bound to a single trace id and command."""

    def __init__(self, tracer: "Tracer", cmd: str):
        self.tracer = tracer
        self.cmd = cmd
        self.trace_id = f"{cmd}-{secrets.token_hex(4)}"

    def _log(self, level: str, scope: str, op: str, msg: str, **fields: Any) -> None:
        if level == "debug" and not self.tracer.debug:
            return
        entry = {
            "ts": datetime.now(timezone.utc).isoformat(),
            "traceId": self.trace_id,
            "level": level,
            "cmd": self.cmd,
            "scope": scope,
            "op": op,
            "msg": msg,
        }
        entry.update({k: v for k, v in fields.items() if v is not None})
        logger.log(_LEVELS[level], "[%s] %s/%s: %s", self.trace_id, scope, op, msg)
        self.tracer.write(entry)

    def debug(self, scope: str, op: str, msg: str, **fields: Any) -> None:
        self._log("debug", scope, op, msg, **fields)

    def info(self, scope: str, op: str, msg: str, **fields: Any) -> None:
        self._log("info", scope, op, msg, **fields)

    def warn(self, scope: str, op: str, msg: str, **fields: Any) -> None:
        self._log("warn", scope, op, msg, **fields)

    def error(self, scope: str, op: str, msg: str, **fields: Any) -> None:
        self._log("error", scope, op, msg, **fields)


class Tracer:
    """Owns the JSONL trace file for the lifetime of one invocation."""

    def __init__(self, traces_dir: Path | None = None, debug: bool | None = None):
        self.traces_dir = traces_dir or settings.traces_dir
        self.debug = settings.debug if debug is None else debug
        self._fh: IO[str] | None = None
        self.entries_written = 0

    @property
    def is_open(self) -> bool:
        return self._fh is not None

    @property
    def path(self) -> Path:
        day = datetime.now(timezone.utc).strftime("%Y-%m-%d")
        return self.traces_dir / f"{day}.jsonl"

    def open(self) -> "Tracer":
        if self._fh is None:
            self.traces_dir.mkdir(parents=True, exist_ok=True)
            self._fh = self.path.open("a", encoding="utf-8")
        return self

    def close(self) -> None:
        if self._fh is not None:
            self._fh.close()
            self._fh = None

    def __enter__(self) -> "Tracer":
        return self.open()

    def __exit__(self, *exc_info) -> None:
        self.close()

    def create_trace(self, cmd: str) -> TraceLogger:
        return TraceLogger(self, cmd)

    def write(self, entry: dict) -> None:
        # Entries logged after close() still reach the logging module
        if self._fh is None:
            return
        self._fh.write(json.dumps(entry, default=str) + "\n")
        self._fh.flush()
        self.entries_written += 1

    def read_trace(self, trace_id: str) -> list[dict]:
        """Return every entry recorded today for a trace id."""
        if not self.path.exists():
            return []
        results = []
        for line in self.path.read_text(encoding="utf-8").splitlines():
            if not line.strip():
                continue
            try:
                entry = json.loads(line)
            except json.JSONDecodeError:
                continue
            if entry.get("traceId") == trace_id:
                results.append(entry)
        return results
