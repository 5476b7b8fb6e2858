"""Candidate selection: read, deduplicate and order an account's inbox."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone

from mailarchiver.folders import Account, ItemClass, MessageHandle, find_child

logger = logging.getLogger(__name__)


def normalize_timestamp(value: datetime) -> datetime:
    """Return an aware datetime; naive values are taken as local time."""
    if value.tzinfo is None:
        return value.astimezone()
    return value


@dataclass
class Candidate:
    """A message considered for archiving in this run."""

    subject: str
    received_time: datetime
    handle: MessageHandle

    @property
    def key(self) -> str:
        """Identity used for deduplication: subject plus received instant."""
        instant = self.received_time.astimezone(timezone.utc).isoformat()
        return f"{self.subject}\x1f{instant}"


@dataclass
class Selection:
    """Candidates of one account plus what went wrong reading them."""

    account_name: str
    candidates: list[Candidate] = field(default_factory=list)
    inbox_found: bool = True
    error: str | None = None
    unreadable: int = 0
    duplicates: int = 0

    @property
    def ok(self) -> bool:
        return self.inbox_found and self.error is None


class CandidateSelector:
    """Produce the ordered, duplicate-free candidates of an account's inbox.

    Only mail items are considered; meeting requests and responses are
    included when ``include_meeting_items`` is set. Calendar entries,
    contacts and tasks are never candidates.
    """

    def __init__(self, include_meeting_items: bool = False):
        self.include_meeting_items = include_meeting_items

    @property
    def item_classes(self) -> frozenset[ItemClass]:
        if self.include_meeting_items:
            return frozenset({ItemClass.MAIL, ItemClass.MEETING})
        return frozenset({ItemClass.MAIL})

    def select(self, account: Account) -> Selection:
        """Return the candidates of ``account`` in ascending received order."""
        selection = Selection(account_name=account.name)

        try:
            inbox = find_child(account.root, account.inbox_name)
        except Exception as e:
            logger.warning(f"[{account.name}] Cannot open inbox: {e}")
            selection.inbox_found = False
            selection.error = str(e)
            return selection

        if inbox is None:
            logger.warning(f"[{account.name}] No inbox found")
            selection.inbox_found = False
            return selection

        try:
            handles = list(inbox.list_items(self.item_classes))
        except Exception as e:
            logger.warning(f"[{account.name}] Cannot list inbox messages: {e}")
            selection.error = str(e)
            return selection

        seen: set[str] = set()
        for handle in handles:
            candidate = self._read(account, handle)
            if candidate is None:
                selection.unreadable += 1
                continue

            if candidate.key in seen:
                selection.duplicates += 1
                continue
            seen.add(candidate.key)
            selection.candidates.append(candidate)

        # sorted() is stable, equal timestamps keep enumeration order
        selection.candidates = sorted(selection.candidates, key=lambda c: c.received_time)

        logger.debug(
            f"[{account.name}] {len(selection.candidates)} candidates "
            f"({selection.duplicates} duplicates, {selection.unreadable} unreadable)"
        )
        return selection

    def _read(self, account: Account, handle: MessageHandle) -> Candidate | None:
        try:
            subject = handle.subject or ""
            received = handle.received_time
        except Exception as e:
            logger.warning(f"[{account.name}] Skipping unreadable message: {e}")
            return None

        if received is None:
            logger.warning(f"[{account.name}] Skipping message without received time: {subject!r}")
            return None

        return Candidate(
            subject=subject,
            received_time=normalize_timestamp(received),
            handle=handle,
        )
