"""
SQLite persistence for funnel Runs and their Candidates.

Every candidate row carries its run_id; rows are keyed by
(run_id, instrument_id, stage) so a layer's output never collides with
another run's rows or another stage of the same run.
"""

import json
import logging
import sqlite3
import threading
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Set

from core.candidate import Candidate, CandidateStage
from core.run import Run, RunStatus, RunType

logger = logging.getLogger(__name__)

_SCHEMA = [
    """
    CREATE TABLE IF NOT EXISTS runs (
        id TEXT PRIMARY KEY,
        run_type TEXT NOT NULL,
        universe_size INTEGER NOT NULL,
        started_at TEXT NOT NULL,
        completed_at TEXT,
        status TEXT NOT NULL,
        metrics TEXT NOT NULL DEFAULT '{}',
        ai_calls_count INTEGER NOT NULL DEFAULT 0,
        ai_cost REAL NOT NULL DEFAULT 0.0,
        error_message TEXT
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS candidates (
        run_id TEXT NOT NULL REFERENCES runs(id),
        instrument_id TEXT NOT NULL,
        stage TEXT NOT NULL,
        symbol TEXT NOT NULL,
        score REAL,
        payload TEXT NOT NULL,
        PRIMARY KEY (run_id, instrument_id, stage)
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_runs_type_started ON runs(run_type, started_at)",
    "CREATE INDEX IF NOT EXISTS idx_candidates_run_stage ON candidates(run_id, stage)",
]


def _dt(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _parse_dt(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


class RunStore:
    """
    Run/Candidate store on a single SQLite connection.

    ``":memory:"`` keeps everything in process, which is what tests use.
    """

    def __init__(self, db_path: str = "data/funnel.db"):
        self.db_path = db_path
        if db_path != ":memory:":
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._lock = threading.Lock()
        with self._lock, self._conn:
            for statement in _SCHEMA:
                self._conn.execute(statement)
        logger.info(f"Initialized RunStore at {db_path}")

    def close(self) -> None:
        self._conn.close()

    # ----- runs -----

    def create_run(self, run: Run) -> Run:
        with self._lock, self._conn:
            self._conn.execute(
                """
                INSERT INTO runs (id, run_type, universe_size, started_at, completed_at, status,
                                  metrics, ai_calls_count, ai_cost, error_message)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                self._run_params(run),
            )
        return run

    def update_run(self, run: Run) -> None:
        with self._lock, self._conn:
            cursor = self._conn.execute(
                """
                UPDATE runs SET completed_at = ?, status = ?, metrics = ?, ai_calls_count = ?,
                                ai_cost = ?, error_message = ?
                WHERE id = ?
                """,
                (
                    _dt(run.completed_at),
                    run.status.value,
                    json.dumps(run.metrics, default=str),
                    run.ai_calls_count,
                    run.ai_cost,
                    run.error_message,
                    run.id,
                ),
            )
            if cursor.rowcount == 0:
                raise KeyError(f"Run {run.id} not found")

    def get_run(self, run_id: str) -> Optional[Run]:
        with self._lock:
            row = self._conn.execute("SELECT * FROM runs WHERE id = ?", (run_id,)).fetchone()
        return self._row_to_run(row) if row else None

    def latest_completed_run(
        self,
        run_type: RunType,
        before: datetime,
        exclude_id: Optional[str] = None,
    ) -> Optional[Run]:
        """Most recent completed run of ``run_type`` started before ``before``."""
        with self._lock:
            row = self._conn.execute(
                """
                SELECT * FROM runs
                WHERE run_type = ? AND status = ? AND started_at < ? AND id != ?
                ORDER BY started_at DESC
                LIMIT 1
                """,
                (RunType(run_type).value, RunStatus.COMPLETED.value, _dt(before), exclude_id or ""),
            ).fetchone()
        return self._row_to_run(row) if row else None

    def recent_runs(
        self,
        run_type: Optional[RunType] = None,
        status: Optional[RunStatus] = None,
        limit: int = 10,
    ) -> List[Run]:
        """Latest runs first."""
        clauses, params = [], []
        if run_type is not None:
            clauses.append("run_type = ?")
            params.append(RunType(run_type).value)
        if status is not None:
            clauses.append("status = ?")
            params.append(RunStatus(status).value)
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        with self._lock:
            rows = self._conn.execute(
                f"SELECT * FROM runs {where} ORDER BY started_at DESC LIMIT ?",
                (*params, limit),
            ).fetchall()
        return [self._row_to_run(r) for r in rows]

    # ----- candidates -----

    def save_candidates(self, run_id: str, candidates: Sequence[Candidate]) -> int:
        """
        Upsert candidates for one run.

        Raises:
            ValueError: if a candidate belongs to a different run
        """
        rows = []
        for candidate in candidates:
            if candidate.run_id != run_id:
                raise ValueError(f"Candidate {candidate.symbol} belongs to run {candidate.run_id}, not {run_id}")
            rows.append((
                run_id,
                candidate.instrument_id,
                candidate.stage.value,
                candidate.symbol,
                candidate.score,
                json.dumps(candidate.to_record(), default=str),
            ))
        with self._lock, self._conn:
            self._conn.executemany(
                """
                INSERT OR REPLACE INTO candidates (run_id, instrument_id, stage, symbol, score, payload)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                rows,
            )
        return len(rows)

    def list_candidates(self, run_id: str, stage: Optional[CandidateStage] = None) -> List[Candidate]:
        query = "SELECT payload FROM candidates WHERE run_id = ?"
        params: List[Any] = [run_id]
        if stage is not None:
            query += " AND stage = ?"
            params.append(CandidateStage(stage).value)
        query += " ORDER BY rowid"
        with self._lock:
            rows = self._conn.execute(query, params).fetchall()
        return [Candidate.from_record(json.loads(r["payload"])) for r in rows]

    def count_candidates(self, run_id: str, stage: CandidateStage) -> int:
        with self._lock:
            row = self._conn.execute(
                "SELECT COUNT(*) AS n FROM candidates WHERE run_id = ? AND stage = ?",
                (run_id, CandidateStage(stage).value),
            ).fetchone()
        return int(row["n"])

    def final_symbols(self, run_id: str) -> Set[str]:
        with self._lock:
            rows = self._conn.execute(
                "SELECT symbol FROM candidates WHERE run_id = ? AND stage = ?",
                (run_id, CandidateStage.FINAL.value),
            ).fetchall()
        return {r["symbol"] for r in rows}

    # ----- helpers -----

    @staticmethod
    def _run_params(run: Run) -> tuple:
        return (
            run.id,
            run.run_type.value,
            run.universe_size,
            _dt(run.started_at),
            _dt(run.completed_at),
            run.status.value,
            json.dumps(run.metrics, default=str),
            run.ai_calls_count,
            run.ai_cost,
            run.error_message,
        )

    @staticmethod
    def _row_to_run(row: sqlite3.Row) -> Run:
        metrics: Dict[str, Any] = json.loads(row["metrics"] or "{}")
        return Run(
            run_type=RunType(row["run_type"]),
            universe_size=row["universe_size"],
            id=row["id"],
            started_at=_parse_dt(row["started_at"]),
            completed_at=_parse_dt(row["completed_at"]),
            status=RunStatus(row["status"]),
            metrics=metrics,
            ai_calls_count=row["ai_calls_count"],
            ai_cost=row["ai_cost"],
            error_message=row["error_message"],
        )
