from __future__ import annotations

import json
import traceback
import uuid
from datetime import datetime, timezone
from pathlib import Path
from threading import Lock
from typing import Any, Callable, TextIO

from .event import PubEvent


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _truncate(text: str, *, limit: int) -> str:
    s = str(text or "")
    if limit <= 0:
        return ""
    if len(s) <= limit:
        return s
    return s[: max(0, limit - 1)] + "…"


class RunLogger:
    """
    JSONL operations log for a registry process.

    Each line is one JSON object (ts, level, event, session_id, optional caller
    and data), so the log can be replayed or audited with ordinary tools.
    """

    def __init__(
        self,
        path: str | Path,
        *,
        overwrite: bool = False,
        session_id: str | None = None,
    ) -> None:
        self._path = Path(path)
        self._overwrite = bool(overwrite)
        self._session_id = (session_id or "").strip() or uuid.uuid4().hex
        self._fp: TextIO | None = None
        self._lock = Lock()
        self._opened = False

    @classmethod
    def open(
        cls,
        path: str | Path,
        *,
        overwrite: bool = False,
        session_id: str | None = None,
    ) -> "RunLogger":
        logger = cls(path, overwrite=overwrite, session_id=session_id)
        logger._ensure_open()
        return logger

    def close(self) -> None:
        with self._lock:
            if self._fp is not None:
                try:
                    self._fp.flush()
                finally:
                    self._fp.close()
                self._fp = None

    def __enter__(self) -> "RunLogger":
        self._ensure_open()
        return self

    def __exit__(self, exc_type: object, exc: object, tb: object) -> None:
        self.close()

    def info(self, event: str, *, caller: str | None = None, **data: Any) -> None:
        self.log("INFO", event, caller=caller, **data)

    def warning(self, event: str, *, caller: str | None = None, **data: Any) -> None:
        self.log("WARN", event, caller=caller, **data)

    def exception(
        self,
        event: str,
        *,
        exc: BaseException,
        caller: str | None = None,
        **data: Any,
    ) -> None:
        err = {
            "type": type(exc).__name__,
            "message": _truncate(str(exc), limit=2000),
            "traceback": _truncate(
                "".join(
                    traceback.format_exception(
                        type(exc), exc, exc.__traceback__
                    )
                ),
                limit=12000,
            ),
        }
        self.log("ERROR", event, caller=caller, error=err, **data)

    def audit_sink(self) -> Callable[[PubEvent], None]:
        """An AuditEmitter subscriber that copies each PubEvent into the log."""

        def _sink(record: PubEvent) -> None:
            data = record.to_dict()
            caller = data.pop("caller")
            self.log("AUDIT", "pub_event", caller=caller, **data)

        return _sink

    def log(self, level: str, event: str, *, caller: str | None = None, **data: Any) -> None:
        lvl = (level or "").strip().upper() or "INFO"
        ev = (event or "").strip() or "event"

        record: dict[str, Any] = {
            "ts": _utc_now_iso(),
            "level": lvl,
            "event": ev,
            "session_id": self._session_id,
        }

        who = (caller or "").strip()
        if who:
            record["caller"] = who

        if data:
            record["data"] = data

        self._write(record)

    def _ensure_open(self) -> None:
        if self._fp is not None:
            return

        with self._lock:
            if self._fp is not None:
                return

            self._path.parent.mkdir(parents=True, exist_ok=True)
            mode = "w" if self._overwrite and not self._opened else "a"

            self._fp = self._path.open(mode, encoding="utf-8", newline="\n")
            self._opened = True

    def _write(self, record: dict[str, Any]) -> None:
        self._ensure_open()

        payload = json.dumps(
            record,
            ensure_ascii=False,
            sort_keys=True,
            separators=(",", ":"),
            default=str,
        )

        with self._lock:
            if self._fp is None:
                return
            self._fp.write(payload + "\n")
            self._fp.flush()
