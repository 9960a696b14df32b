"""Audit sinks: append-only, never raising into the governed action."""

from __future__ import annotations

import json
import logging
import sqlite3
import threading
from pathlib import Path
from typing import Protocol

from governed_infra.audit.models import AuditRecord
from governed_infra.config import AuditSettings
from governed_infra.utils.serialization import json_default
from governed_infra.utils.time import utc_day

logger = logging.getLogger(__name__)


class AuditSink(Protocol):
    failures: int

    def append(self, record: AuditRecord) -> None: ...


class JsonlAuditSink:
    """One line-delimited JSON file per UTC day (``audit-YYYY-MM-DD.jsonl``)."""

    def __init__(self, directory: str) -> None:
        self._directory = Path(directory)
        self._lock = threading.Lock()
        self.failures = 0

    def path_for_day(self, day: str) -> Path:
        return self._directory / f"audit-{day}.jsonl"

    def append(self, record: AuditRecord) -> None:
        try:
            line = json.dumps(record.to_dict(), ensure_ascii=True, default=json_default)
            path = self.path_for_day(utc_day())
            with self._lock:
                self._directory.mkdir(parents=True, exist_ok=True)
                with path.open("a", encoding="utf-8") as handle:
                    handle.write(line + "\n")
        except (OSError, TypeError, ValueError) as exc:
            with self._lock:
                self.failures += 1
            logger.warning(
                "AUDIT_APPEND_FAILED action=%s key=%s failures=%d error=%s",
                record.action,
                record.idempotency_key,
                self.failures,
                exc,
            )


class SqliteAuditSink:
    """Append-only ``audit_records`` table in a local SQLite database."""

    def __init__(self, path: str, wal: bool = True) -> None:
        Path(path).parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._lock = threading.Lock()
        self._closed = False
        self.failures = 0
        if wal:
            self._conn.execute("PRAGMA journal_mode=WAL")
        self._init_schema()

    def _init_schema(self) -> None:
        self._conn.executescript(
            """
            CREATE TABLE IF NOT EXISTS audit_records (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                timestamp TEXT NOT NULL,
                action TEXT NOT NULL,
                idempotency_key TEXT NOT NULL,
                status TEXT NOT NULL,
                state TEXT NOT NULL,
                decision TEXT,
                request TEXT NOT NULL,
                response TEXT NOT NULL,
                duration_ms INTEGER,
                actor TEXT
            );

            CREATE INDEX IF NOT EXISTS idx_audit_records_key
                ON audit_records(idempotency_key);
            CREATE INDEX IF NOT EXISTS idx_audit_records_timestamp
                ON audit_records(timestamp);
            """
        )
        self._conn.commit()

    def append(self, record: AuditRecord) -> None:
        try:
            values = (
                record.timestamp,
                record.action,
                record.idempotency_key,
                record.status,
                record.state,
                record.decision,
                json.dumps(record.request, ensure_ascii=True, default=json_default),
                json.dumps(record.response, ensure_ascii=True, default=json_default),
                record.duration_ms,
                record.actor,
            )
            with self._lock:
                self._conn.execute(
                    """
                    INSERT INTO audit_records (
                        timestamp, action, idempotency_key, status, state, decision,
                        request, response, duration_ms, actor
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    values,
                )
                self._conn.commit()
        except (sqlite3.Error, TypeError, ValueError) as exc:
            with self._lock:
                self.failures += 1
            logger.warning(
                "AUDIT_APPEND_FAILED action=%s key=%s failures=%d error=%s",
                record.action,
                record.idempotency_key,
                self.failures,
                exc,
            )

    def fetch_recent(self, limit: int = 50) -> list[dict[str, object]]:
        with self._lock:
            rows = self._conn.execute(
                "SELECT * FROM audit_records ORDER BY id DESC LIMIT ?", (limit,)
            ).fetchall()
        records: list[dict[str, object]] = []
        for row in rows:
            item = dict(row)
            item["request"] = json.loads(item["request"])
            item["response"] = json.loads(item["response"])
            records.append(item)
        return records

    def close(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._conn.close()
            self._closed = True


def build_audit_sink(settings: AuditSettings) -> AuditSink:
    if settings.backend == "sqlite":
        return SqliteAuditSink(settings.sqlite_path, wal=settings.sqlite_wal)
    return JsonlAuditSink(settings.directory)
