"""
callcap/exporters/sqlite_exporter.py
Run store — every run and every per-call outcome in one SQLite file.
Read back by callcap.api.

SCHEMA DESIGN NOTES:
- callcap_runs has one row per pipeline run, inserted at start and updated
  with the summary counts when the run finishes (a run that died midway
  keeps finished_at NULL)
- outcomes has one row per fetched record, FK → callcap_runs.id
- a call_id may repeat within a run (several CDR rows for one call) and
  across runs
- all durations are REAL seconds
"""

import json
import logging
import sqlite3
from datetime import datetime
from pathlib import Path
from typing import Optional

from callcap.exporters.base import OutcomeReporter
from callcap.models.record import RecordOutcome, RunSummary

logger = logging.getLogger(__name__)

SCHEMA_VERSION = '1.0'


class SqliteOutcomeReporter(OutcomeReporter):

    def __init__(self, db_path: Path):
        self.db_path = Path(db_path)
        self.run_id: Optional[int] = None
        self._conn:  Optional[sqlite3.Connection] = None

    def start_run(self, run_label: str) -> None:
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(str(self.db_path))
        self._conn.execute("PRAGMA journal_mode=WAL")   # API may read while we write
        self._conn.execute("PRAGMA foreign_keys=ON")
        create_schema(self._conn)
        cur = self._conn.execute("""
            INSERT INTO callcap_runs (started_at, run_label, schema_version)
            VALUES (?,?,?)
        """, (datetime.now().isoformat(), run_label or 'callcap-run', SCHEMA_VERSION))
        self._conn.commit()
        self.run_id = cur.lastrowid
        logger.debug(f"Run #{self.run_id} registered in {self.db_path}")

    def record(self, outcome: RecordOutcome, query_time: float) -> None:
        if self._conn is None:
            raise RuntimeError("SqliteOutcomeReporter.record() called before start_run()")
        self._conn.execute("""
            INSERT INTO outcomes
            (run_id, call_id, status, branch, failed_stage, reason,
             query_time, rtp_time, sip_time, merge_time, total_time,
             rtp_bytes, sip_bytes, output_path, cleanup_errors)
            VALUES (?,?,?,?,?,?,?,?,?,?,?,?,?,?,?)
        """, (
            self.run_id,
            outcome.call_id,
            outcome.status,
            outcome.branch,
            outcome.failed_stage,
            outcome.reason,
            query_time,
            outcome.rtp_time,
            outcome.sip_time,
            outcome.merge_time,
            outcome.total_time,
            outcome.rtp_bytes,
            outcome.sip_bytes,
            str(outcome.output_path) if outcome.output_path else None,
            json.dumps(outcome.cleanup_errors),
        ))
        self._conn.commit()

    def finish_run(self, summary: RunSummary) -> None:
        if self._conn is None:
            return
        self._conn.execute("""
            UPDATE callcap_runs SET
                finished_at = ?, records_fetched = ?, succeeded = ?,
                partial = ?, failed = ?, query_time = ?, total_time = ?
            WHERE id = ?
        """, (
            datetime.now().isoformat(),
            summary.records_fetched,
            summary.succeeded,
            summary.partial,
            summary.failed,
            summary.query_time,
            summary.total_time,
            self.run_id,
        ))
        self._conn.commit()
        logger.info(
            f"SQLite run store updated → {self.db_path} (run #{self.run_id})"
        )

    def close(self) -> None:
        if self._conn is not None:
            self._conn.close()
            self._conn = None


# ── SCHEMA ───────────────────────────────────────────────────

def create_schema(conn: sqlite3.Connection) -> None:
    conn.executescript("""
        CREATE TABLE IF NOT EXISTS callcap_runs (
            id              INTEGER PRIMARY KEY AUTOINCREMENT,
            started_at      TEXT    NOT NULL,
            finished_at     TEXT,
            run_label       TEXT,
            schema_version  TEXT    NOT NULL,
            records_fetched INTEGER DEFAULT 0,
            succeeded       INTEGER DEFAULT 0,
            partial         INTEGER DEFAULT 0,
            failed          INTEGER DEFAULT 0,
            query_time      REAL    DEFAULT 0.0,
            total_time      REAL    DEFAULT 0.0
        );

        CREATE TABLE IF NOT EXISTS outcomes (
            id              INTEGER PRIMARY KEY AUTOINCREMENT,
            run_id          INTEGER NOT NULL REFERENCES callcap_runs(id),
            call_id         INTEGER NOT NULL,
            status          TEXT    NOT NULL,   -- success / partial / failed
            branch          TEXT,               -- rtp / sip-only
            failed_stage    TEXT,
            reason          TEXT,
            query_time      REAL DEFAULT 0.0,
            rtp_time        REAL DEFAULT 0.0,
            sip_time        REAL DEFAULT 0.0,
            merge_time      REAL DEFAULT 0.0,
            total_time      REAL DEFAULT 0.0,
            rtp_bytes       INTEGER DEFAULT 0,
            sip_bytes       INTEGER DEFAULT 0,
            output_path     TEXT,
            cleanup_errors  TEXT                -- JSON array
        );

        CREATE INDEX IF NOT EXISTS idx_outcome_call   ON outcomes(call_id);
        CREATE INDEX IF NOT EXISTS idx_outcome_status ON outcomes(status);
    """)
