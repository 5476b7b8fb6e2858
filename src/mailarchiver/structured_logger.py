"""Structured logging for mailarchiver."""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from mailarchiver.engine import MessageDecision, RunStats

logger = logging.getLogger(__name__)


class StructuredLogger:
    """Structured logger for the audit trail."""

    def __init__(self, log_file: str | Path | None = None):
        """Initialize structured logger.

        Args:
            log_file: Path to JSON lines file for the audit trail
        """
        self.log_file = Path(log_file) if log_file else None

    def log_event(self, event_type: str, data: dict[str, Any]) -> None:
        """Log a structured event.

        Args:
            event_type: Type of event (e.g., 'decision', 'run_summary')
            data: Event data
        """
        event = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "event_type": event_type,
            **data,
        }

        if self.log_file:
            try:
                with open(self.log_file, "a", encoding="utf-8") as f:
                    f.write(json.dumps(event) + "\n")
            except Exception as e:
                logger.error(f"Failed to write to audit log: {e}")

    def log_decision(self, decision: MessageDecision, simulate: bool) -> None:
        """Log the decision taken for one message."""
        data = decision.to_dict()
        data["subject"] = clean_subject(decision.subject)
        data["simulate"] = simulate
        self.log_event("decision", data)

    def log_account_skipped(self, account: str, reason: str) -> None:
        """Log an account that was not processed."""
        self.log_event("account_skipped", {"account": account, "reason": reason})

    def log_run_summary(self, stats: RunStats, simulate: bool, cutoff: datetime) -> None:
        """Log the counters at the end of a run."""
        self.log_event(
            "run_summary",
            {"simulate": simulate, "cutoff": cutoff.isoformat(), **stats.to_dict()},
        )

    def log_error(self, stage: str, message: str, account: str | None = None) -> None:
        """Log a failure that ended a run or an account early."""
        self.log_event("error", {"stage": stage, "account": account, "message": message})

    def log_startup(self, settings: dict[str, Any]) -> None:
        self.log_event("startup", settings)

    def log_shutdown(self, reason: str = "normal") -> None:
        self.log_event("shutdown", {"reason": reason})


def clean_subject(subject: str, limit: int = 500) -> str:
    """Drop control characters from a subject and cap its length."""
    cleaned = "".join(c for c in subject if c.isprintable() or c == "\t")
    if len(cleaned) > limit:
        cleaned = cleaned[: limit - 3] + "..."
    return cleaned
