"""CSV event log for device commands, health checks and sensor loops."""
from __future__ import annotations

import asyncio
import contextlib
import contextvars
import csv
import json
import logging
import threading
from datetime import datetime, timezone
from pathlib import Path
from time import perf_counter
from typing import Any, Callable, Dict, Iterator, Mapping, Optional, Sequence, Tuple

logger = logging.getLogger(__name__)

DEFAULT_FIELDS: Sequence[str] = (
    "timestamp",
    "event",
    "status",
    "value",
    "message",
    "extra",
)

# Scope layers follow the asyncio task (and asyncio.to_thread) that opened them.
_scope_layers: contextvars.ContextVar[Tuple[Mapping[str, Any], ...]] = contextvars.ContextVar(
    "kiosklink_metrics_scope", default=()
)


def _utc_iso(dt: datetime) -> str:
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).isoformat(timespec="milliseconds")


def _encode_extra(extra: Mapping[str, Any]) -> str:
    if not extra:
        return ""
    try:
        return json.dumps(extra, separators=(",", ":"), ensure_ascii=True, sort_keys=True, default=str)
    except (TypeError, ValueError):
        return repr(extra)


class MetricsLogger:
    """Append-only CSV log of device events.

    Every row is flushed as soon as it is written so the ``/events`` websocket
    can tail the file while the loops run. The ``extra`` column merges, in
    increasing precedence, ``static_extra`` (typically the device), the
    layers opened with :meth:`scope` on the current task, and the per-call
    ``extra``.
    """

    def __init__(
        self,
        path: str | Path,
        *,
        fields: Sequence[str] | None = None,
        static_extra: Mapping[str, Any] | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.path = Path(path)
        self.fields: Sequence[str] = tuple(fields) if fields is not None else DEFAULT_FIELDS
        if not self.fields:
            raise ValueError("fields must contain at least one column")
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._static_extra: Dict[str, Any] = dict(static_extra or {})
        self._write_lock = threading.Lock()
        self.path.parent.mkdir(parents=True, exist_ok=True)
        if not self.path.exists() or self.path.stat().st_size == 0:
            self._append(None)

    def log(
        self,
        event: str,
        *,
        status: Optional[str] = None,
        value: Optional[float] = None,
        message: Optional[str] = None,
        extra: Optional[Mapping[str, Any]] = None,
    ) -> None:
        merged: Dict[str, Any] = dict(self._static_extra)
        for layer in _scope_layers.get():
            merged.update(layer)
        merged.update(extra or {})
        row = {
            "timestamp": _utc_iso(self._clock()),
            "event": event,
            "status": status or "",
            "value": "" if value is None else value,
            "message": message or "",
            "extra": _encode_extra(merged),
        }
        self._append(row)

    async def log_async(
        self,
        event: str,
        *,
        status: Optional[str] = None,
        value: Optional[float] = None,
        message: Optional[str] = None,
        extra: Optional[Mapping[str, Any]] = None,
    ) -> None:
        """:meth:`log` on a worker thread so file I/O never blocks the event loop."""
        await asyncio.to_thread(self.log, event, status=status, value=value, message=message, extra=extra)

    @contextlib.contextmanager
    def scope(self, extra: Mapping[str, Any] | None = None, **extra_kwargs: Any) -> Iterator[None]:
        """Tag every row logged from the current task while the block runs."""
        layer = {**(extra or {}), **extra_kwargs}
        token = _scope_layers.set(_scope_layers.get() + (layer,))
        try:
            yield
        finally:
            _scope_layers.reset(token)

    @contextlib.contextmanager
    def timer(
        self,
        event: str,
        *,
        extra: Optional[Mapping[str, Any]] = None,
        **extra_kwargs: Any,
    ) -> Iterator[None]:
        """Log ``event`` with its duration as value, ``ok`` or ``error``."""
        payload = {**(extra or {}), **extra_kwargs}
        started = perf_counter()
        try:
            yield
        except Exception as exc:
            payload["exception"] = type(exc).__name__
            self.log(event, status="error", value=perf_counter() - started, message=str(exc), extra=payload)
            raise
        self.log(event, status="ok", value=perf_counter() - started, extra=payload)

    def _append(self, row: Optional[Mapping[str, Any]]) -> None:
        with self._write_lock:
            mode = "a" if row is not None else "w"
            with self.path.open(mode, newline="", encoding="utf-8") as handle:
                writer = csv.DictWriter(handle, fieldnames=self.fields, extrasaction="ignore")
                if row is None:
                    writer.writeheader()
                else:
                    writer.writerow({key: row.get(key, "") for key in self.fields})
                handle.flush()


async def record(
    metrics: Optional[MetricsLogger],
    event: str,
    *,
    status: Optional[str] = None,
    value: Optional[float] = None,
    message: Optional[str] = None,
    extra: Optional[Mapping[str, Any]] = None,
) -> None:
    """Write one row off the event loop if a logger is configured; write errors are only logged."""
    if metrics is None:
        return
    try:
        await metrics.log_async(event, status=status, value=value, message=message, extra=extra)
    except OSError:
        logger.debug("Metrics logging failed for %s", event, exc_info=True)


__all__ = [
    "MetricsLogger",
    "DEFAULT_FIELDS",
    "record",
]
