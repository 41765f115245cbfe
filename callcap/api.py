"""
callcap/api.py
─────────────────────────────────────────────────────────────────────────────
callcap — read-only access to the SQLite run store

TWO USAGE MODES:
  1. Importable module:
         from callcap.api import OutcomeAPI
         api = OutcomeAPI(db_path=Path("callcap.db"))
         failed = api.get_outcomes(status="failed")

  2. FastAPI HTTP server:
         python -m callcap.api                    # default: port 8766
         python -m callcap.api --port 9000
         uvicorn callcap.api:app --port 8766

ENDPOINTS:
  GET  /health               — server status, db existence
  GET  /runs                 — runs, newest first
  GET  /runs/latest          — most recent run
  GET  /outcomes             — per-call outcomes (filters: run_id, status)
  GET  /outcomes/{call_id}   — every outcome recorded for one call, newest first

The server binds to 127.0.0.1 by default. It never triggers extraction;
runs are started from the `callcap` CLI only.
"""

from __future__ import annotations

import json
import logging
import sqlite3
from pathlib import Path
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, HTTPException, Query

logger = logging.getLogger(__name__)

API_VERSION = "1.0.0"
VALID_STATUSES = ("success", "partial", "failed")


# ═══════════════════════════════════════════════════════════════════════════
# IMPORTABLE CLASS
# ═══════════════════════════════════════════════════════════════════════════

class OutcomeAPI:
    """
    Pure-Python API wrapper around callcap.db.
    No HTTP layer required. Import and call directly.
    """

    def __init__(self, db_path: Path = Path("callcap.db")):
        self.db_path = Path(db_path)

    # ── INTERNAL ──────────────────────────────────────────────────────────

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(str(self.db_path))
        conn.row_factory = sqlite3.Row
        return conn

    def _db_exists(self) -> bool:
        return self.db_path.exists()

    @staticmethod
    def _row_to_dict(row) -> Dict[str, Any]:
        d = {k: row[k] for k in row.keys()}
        if d.get("cleanup_errors") is not None:
            try:
                d["cleanup_errors"] = json.loads(d["cleanup_errors"])
            except (json.JSONDecodeError, TypeError):
                pass  # leave as-is
        return d

    # ── QUERY: RUNS ───────────────────────────────────────────────────────

    def get_runs(self, limit: int = 20, offset: int = 0) -> List[Dict[str, Any]]:
        """Runs sorted newest first. limit capped at 200."""
        if not self._db_exists():
            return []
        limit  = min(int(limit), 200)
        offset = max(int(offset), 0)
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM callcap_runs ORDER BY id DESC LIMIT ? OFFSET ?",
                (limit, offset),
            ).fetchall()
        return [self._row_to_dict(r) for r in rows]

    def get_latest_run(self) -> Optional[Dict[str, Any]]:
        runs = self.get_runs(limit=1)
        return runs[0] if runs else None

    # ── QUERY: OUTCOMES ───────────────────────────────────────────────────

    def get_outcomes(
        self,
        run_id: Optional[int] = None,
        status: Optional[str] = None,
        limit:  int = 100,
        offset: int = 0,
    ) -> List[Dict[str, Any]]:
        """
        Per-call outcomes sorted by call_id.

        Args:
            run_id: restrict to one run (default: every run)
            status: "success", "partial" or "failed" (case-insensitive)
            limit:  max rows (default 100, max enforced: 1000)
            offset: pagination offset
        """
        if not self._db_exists():
            return []

        limit  = min(int(limit), 1000)
        offset = max(int(offset), 0)

        sql = "SELECT * FROM outcomes WHERE 1=1"
        params: list = []
        if run_id is not None:
            sql += " AND run_id = ?"
            params.append(int(run_id))
        if status:
            sql += " AND status = ?"
            params.append(status.lower())
        sql += " ORDER BY run_id DESC, call_id ASC LIMIT ? OFFSET ?"
        params += [limit, offset]

        with self._connect() as conn:
            rows = conn.execute(sql, params).fetchall()
        return [self._row_to_dict(r) for r in rows]

    def get_call(self, call_id: int) -> List[Dict[str, Any]]:
        """Every outcome recorded for call_id, newest run first."""
        if not self._db_exists():
            return []
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM outcomes WHERE call_id = ? ORDER BY run_id DESC",
                (int(call_id),),
            ).fetchall()
        return [self._row_to_dict(r) for r in rows]


# ═══════════════════════════════════════════════════════════════════════════
# FASTAPI HTTP APP
# ═══════════════════════════════════════════════════════════════════════════

def _build_app(db_path: Path = Path("callcap.db")) -> FastAPI:
    """Build and return the FastAPI application instance."""
    _api = OutcomeAPI(db_path=db_path)

    _app = FastAPI(
        title       = "callcap API",
        description = "Read-only view of per-call PCAP reconstruction runs",
        version     = API_VERSION,
        docs_url    = "/docs",
        redoc_url   = None,
    )

    @_app.get("/health", summary="Health check")
    def health():
        return {
            "status":    "ok",
            "db_exists": _api.db_path.exists(),
            "db_path":   str(_api.db_path),
            "version":   API_VERSION,
        }

    @_app.get("/runs", summary="List runs")
    def get_runs(
        limit:  int = Query(20, ge=1, le=200),
        offset: int = Query(0,  ge=0),
    ):
        try:
            data = _api.get_runs(limit=limit, offset=offset)
        except sqlite3.Error as exc:
            raise HTTPException(status_code=500, detail=str(exc))
        return {"count": len(data), "runs": data}

    @_app.get("/runs/latest", summary="Most recent run")
    def get_latest_run():
        try:
            data = _api.get_latest_run()
        except sqlite3.Error as exc:
            raise HTTPException(status_code=500, detail=str(exc))
        if data is None:
            raise HTTPException(status_code=404, detail="No runs recorded yet.")
        return data

    @_app.get("/outcomes", summary="List per-call outcomes")
    def get_outcomes(
        run_id: Optional[int] = Query(None, description="Restrict to one run"),
        status: Optional[str] = Query(None, description="success, partial or failed"),
        limit:  int           = Query(100, ge=1, le=1000),
        offset: int           = Query(0,   ge=0),
    ):
        if status and status.lower() not in VALID_STATUSES:
            raise HTTPException(status_code=400, detail=f"Unknown status: {status}")
        try:
            data = _api.get_outcomes(run_id=run_id, status=status, limit=limit, offset=offset)
        except sqlite3.Error as exc:
            raise HTTPException(status_code=500, detail=str(exc))
        return {"count": len(data), "outcomes": data}

    @_app.get("/outcomes/{call_id}", summary="Outcomes for one call")
    def get_call(call_id: int):
        try:
            data = _api.get_call(call_id)
        except sqlite3.Error as exc:
            raise HTTPException(status_code=500, detail=str(exc))
        if not data:
            raise HTTPException(status_code=404, detail=f"Call not found: {call_id}")
        return {"call_id": call_id, "outcomes": data}

    return _app


# Module-level app instance — used by uvicorn callcap.api:app
app = _build_app()


# ═══════════════════════════════════════════════════════════════════════════
# CLI ENTRYPOINT — python -m callcap.api
# ═══════════════════════════════════════════════════════════════════════════

def main(argv=None):
    import argparse

    import uvicorn

    parser = argparse.ArgumentParser(
        prog        = "callcap-api",
        description = "callcap API server — read-only view of the run store",
    )
    parser.add_argument("--port", type=int, default=8766,
                        help="Port to bind (default: 8766)")
    parser.add_argument("--db",   type=str, default="callcap.db",
                        help="Path to callcap.db (default: callcap.db)")
    parser.add_argument("--host", type=str, default="127.0.0.1",
                        help="Host to bind (default: 127.0.0.1)")
    args = parser.parse_args(argv)

    server_app = _build_app(db_path=Path(args.db))
    print(f"callcap API v{API_VERSION} → http://{args.host}:{args.port}  (db: {args.db})")
    uvicorn.run(server_app, host=args.host, port=args.port, log_level="info")


if __name__ == "__main__":
    main()
