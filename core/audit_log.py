"""
Audit trail for funnel runs and gate decisions.

Output format: JSONL (one JSON object per line).
"""

import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)


class AuditLogger:
    """
    Structured audit trail logger.

    Logs:
    - Every funnel run (status, stage counts, AI usage, finals, failure)
    - Every gate decision on a trade recommendation

    A failed write is logged and swallowed; auditing never aborts a run.
    """

    def __init__(self, audit_file: Optional[str] = None):
        """
        Args:
            audit_file: Path to audit log file (default: logs/funnel_audit.jsonl)
        """
        self.audit_file = Path(audit_file) if audit_file else Path("logs/funnel_audit.jsonl")
        self.audit_file.parent.mkdir(parents=True, exist_ok=True)
        logger.info(f"Initialized AuditLogger at {self.audit_file}")

    def log_run(self, run: Any, final_symbols: Optional[List[str]] = None) -> None:
        """
        Log a finished funnel run.

        Args:
            run: Run record (completed or failed)
            final_symbols: Symbols that reached the final stage
        """
        metrics = getattr(run, "metrics", {}) or {}
        entry = {
            "type": "run",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "run_id": run.id,
            "run_type": run.run_type.value,
            "status": run.status.value,
            "universe_size": run.universe_size,
            "started_at": run.started_at.isoformat(),
            "completed_at": run.completed_at.isoformat() if run.completed_at else None,
            "funnel": {
                key: metrics.get(key)
                for key in ("eligible_count", "ranked_count", "ai_evaluated_count", "final_count")
            },
            "ai": {"calls": run.ai_calls_count, "cost": run.ai_cost},
            "final_symbols": final_symbols or [],
            "error": run.error_message,
        }
        self._write(entry)

    def log_decision(
        self,
        symbol: str,
        approved: bool,
        reason: str,
        errors: Optional[List[str]] = None,
        gates: Optional[Dict[str, Any]] = None,
        context: Optional[Dict[str, Any]] = None,
    ) -> None:
        """Log one decision-gate outcome for a trade recommendation."""
        entry = {
            "type": "decision",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "symbol": symbol,
            "status": "APPROVED" if approved else "REJECTED",
            "reason": reason,
            "errors": errors or [],
        }
        if gates:
            entry["gates"] = gates
        if context:
            entry["context"] = context
        self._write(entry)

    def _write(self, entry: Dict[str, Any]) -> None:
        try:
            with open(self.audit_file, "a", encoding="utf-8") as f:
                f.write(json.dumps(entry, default=str) + "\n")
            logger.debug(f"Audited {entry['type']}: status={entry['status']}")
        except OSError as e:
            logger.error(f"Failed to write audit log: {e}")

    def get_recent(self, n: int = 10, entry_type: Optional[str] = None) -> List[Dict[str, Any]]:
        """
        Get the N most recent entries, most recent first.

        Args:
            n: Number of entries to retrieve
            entry_type: Optional filter ("run" or "decision")
        """
        if not self.audit_file.exists():
            return []

        with open(self.audit_file, "r", encoding="utf-8") as f:
            lines = f.readlines()

        entries = []
        for line in reversed(lines):
            try:
                entry = json.loads(line)
            except json.JSONDecodeError:
                continue
            if entry_type and entry.get("type") != entry_type:
                continue
            entries.append(entry)
            if len(entries) >= n:
                break
        return entries
