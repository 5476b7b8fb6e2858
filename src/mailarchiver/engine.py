"""Move decision engine: skip, keep or archive each candidate."""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from datetime import datetime
from enum import Enum
from typing import Any

from mailarchiver.config import SkipRule
from mailarchiver.folders import FolderLike, MailArchiverError, get_or_create_child
from mailarchiver.selector import Candidate, normalize_timestamp

logger = logging.getLogger(__name__)


class Outcome(str, Enum):
    """Terminal state of a message within one run."""

    SKIPPED = "skipped"
    TOO_RECENT = "too_recent"
    MOVED = "moved"
    MOVED_SIMULATED = "moved_simulated"
    ERROR = "error"


class ContainerError(MailArchiverError):
    """A year or month container could not be found or created."""


@dataclass
class MessageDecision:
    """What happened to one message."""

    account: str
    subject: str
    received_time: datetime
    outcome: Outcome
    destination: str | None = None
    matched_rule: str | None = None
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "account": self.account,
            "subject": self.subject,
            "received_time": self.received_time.isoformat(),
            "outcome": self.outcome.value,
            "destination": self.destination,
            "matched_rule": self.matched_rule,
            "error": self.error,
        }


@dataclass
class RunStats:
    """Counters for one run. Never shared between runs."""

    accounts_processed: int = 0
    accounts_skipped: int = 0
    processed: int = 0
    moved: int = 0
    simulated: int = 0
    skipped: int = 0
    too_recent: int = 0
    errors: int = 0

    def record(self, outcome: Outcome) -> None:
        self.processed += 1
        if outcome is Outcome.MOVED:
            self.moved += 1
        elif outcome is Outcome.MOVED_SIMULATED:
            self.simulated += 1
        elif outcome is Outcome.SKIPPED:
            self.skipped += 1
        elif outcome is Outcome.TOO_RECENT:
            self.too_recent += 1
        elif outcome is Outcome.ERROR:
            self.errors += 1

    def merge(self, other: RunStats) -> RunStats:
        """Add the counters of ``other`` to this instance and return it."""
        for name, value in asdict(other).items():
            setattr(self, name, getattr(self, name) + value)
        return self

    def to_dict(self) -> dict[str, int]:
        return asdict(self)


def container_names(received: datetime) -> tuple[str, str]:
    """Year and month container names for a received timestamp."""
    return f"{received.year:04d}", f"{received.year:04d}-{received.month:02d}"


class MoveDecisionEngine:
    """Decide, and in live mode carry out, the fate of each candidate.

    Order per message: account skip rules, then the retention cutoff
    (strictly older than the cutoff is archivable), then the move into
    ``<archive root>/<yyyy>/<yyyy-MM>`` named after the message's own
    received date. Simulate mode never creates folders or moves messages.
    """

    def __init__(self, cutoff: datetime, skip_rules: list[SkipRule], simulate: bool = True):
        self.cutoff = normalize_timestamp(cutoff)
        self.skip_rules = list(skip_rules)
        self.simulate = simulate
        self._containers: dict[str, FolderLike] = {}

    def decide(
        self,
        candidate: Candidate,
        account_name: str,
        archive_root: FolderLike,
    ) -> MessageDecision:
        """Evaluate one candidate and return its decision."""
        decision = MessageDecision(
            account=account_name,
            subject=candidate.subject,
            received_time=candidate.received_time,
            outcome=Outcome.TOO_RECENT,
        )

        matched = self._match_skip_rule(account_name, candidate.subject)
        if matched is not None:
            decision.outcome = Outcome.SKIPPED
            decision.matched_rule = matched
            self._log(decision)
            return decision

        if not candidate.received_time < self.cutoff:
            self._log(decision)
            return decision

        year_name, month_name = container_names(candidate.received_time)
        decision.destination = f"{archive_root.name}/{year_name}/{month_name}"

        if self.simulate:
            decision.outcome = Outcome.MOVED_SIMULATED
            self._log(decision)
            return decision

        try:
            month = self._month_container(account_name, archive_root, year_name, month_name)
            candidate.handle.move_to(month)
            decision.outcome = Outcome.MOVED
        except Exception as e:
            decision.outcome = Outcome.ERROR
            decision.error = str(e) or type(e).__name__

        self._log(decision)
        return decision

    def _match_skip_rule(self, account_name: str, subject: str) -> str | None:
        for rule in self.skip_rules:
            if not rule.applies_to(account_name):
                continue
            matched = rule.matches(subject)
            if matched is not None:
                return matched
        return None

    def _month_container(
        self,
        account_name: str,
        archive_root: FolderLike,
        year_name: str,
        month_name: str,
    ) -> FolderLike:
        month_key = f"{account_name}/{year_name}/{month_name}"
        if month_key in self._containers:
            return self._containers[month_key]

        year_key = f"{account_name}/{year_name}"
        try:
            year = self._containers.get(year_key)
            if year is None:
                year = get_or_create_child(archive_root, year_name)
                self._containers[year_key] = year

            month = get_or_create_child(year, month_name)
        except Exception as e:
            raise ContainerError(
                f"Cannot get or create '{archive_root.name}/{year_name}/{month_name}': {e}"
            ) from e

        self._containers[month_key] = month
        return month

    def _log(self, decision: MessageDecision) -> None:
        received = decision.received_time.strftime("%Y-%m-%d %H:%M")
        prefix = f"[{decision.account}] {decision.outcome.value.upper()} {received} {decision.subject!r}"

        if decision.outcome is Outcome.ERROR:
            logger.error(f"{prefix} -> {decision.destination}: {decision.error}")
        elif decision.outcome is Outcome.SKIPPED:
            logger.info(f"{prefix} (matched '{decision.matched_rule}')")
        elif decision.outcome is Outcome.TOO_RECENT:
            logger.info(prefix)
        else:
            logger.info(f"{prefix} -> {decision.destination}")
