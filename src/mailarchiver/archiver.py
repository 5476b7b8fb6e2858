"""Run orchestration: accounts, archive roots, candidates and decisions."""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum

from mailarchiver.config import AccountFilterConfig, Config
from mailarchiver.engine import MessageDecision, MoveDecisionEngine, RunStats
from mailarchiver.folders import Account, MailClient
from mailarchiver.locator import ArchiveLocator, ArchivePathStore, ArchiveRootNotFound, Destination
from mailarchiver.selector import CandidateSelector, normalize_timestamp
from mailarchiver.structured_logger import StructuredLogger

logger = logging.getLogger(__name__)

PersistCallback = Callable[[dict[str, Destination]], None]


class AccountFilter:
    """Name based allow/deny list for accounts.

    A non-empty include list wins; otherwise every account not on the
    exclude list is processed. Names compare case-insensitively.
    """

    def __init__(self, include: Iterable[str] = (), exclude: Iterable[str] = ()):
        self.include = {name.casefold() for name in include}
        self.exclude = {name.casefold() for name in exclude}

    @classmethod
    def from_config(cls, config: AccountFilterConfig) -> AccountFilter:
        return cls(include=config.include, exclude=config.exclude)

    def allows(self, account_name: str) -> bool:
        name = account_name.casefold()
        if self.include:
            return name in self.include
        return name not in self.exclude


class AccountStatus(str, Enum):
    """How far processing of an account got."""

    PROCESSED = "processed"
    NO_ARCHIVE_ROOT = "no_archive_root"
    NO_INBOX = "no_inbox"
    ENUMERATION_FAILED = "enumeration_failed"
    FAILED = "failed"


@dataclass
class AccountReport:
    """Result of processing one account."""

    name: str
    status: AccountStatus = AccountStatus.PROCESSED
    archive_root: str | None = None
    error: str | None = None
    unreadable: int = 0
    duplicates: int = 0
    decisions: list[MessageDecision] = field(default_factory=list)
    stats: RunStats = field(default_factory=RunStats)


@dataclass
class RunReport:
    """Everything a run decided, plus aggregate counters."""

    started_at: datetime
    cutoff: datetime
    simulate: bool
    accounts: list[AccountReport] = field(default_factory=list)
    stats: RunStats = field(default_factory=RunStats)

    @property
    def decisions(self) -> list[MessageDecision]:
        return [d for account in self.accounts for d in account.decisions]


def compute_cutoff(now: datetime, retention_days: int) -> datetime:
    """Messages received strictly before the returned instant are archivable.

    A window reaching past the first representable date yields the
    earliest possible instant, so nothing is archived.
    """
    if retention_days < 0:
        raise ValueError(f"retention_days must be >= 0, got {retention_days}")
    try:
        return normalize_timestamp(now) - timedelta(days=retention_days)
    except OverflowError:
        logger.warning(f"Retention of {retention_days} days reaches before year 1, nothing will be archived")
        return datetime.min.replace(tzinfo=timezone.utc)


def _select_accounts(
    client: MailClient,
    account_filter: AccountFilter,
) -> list[Account]:
    accounts = []
    for account in client.list_accounts():
        if account_filter.allows(account.name):
            accounts.append(account)
        else:
            logger.debug(f"[{account.name}] Filtered out by account policy")
    return accounts


def run_archive(
    config: Config,
    client: MailClient,
    *,
    now: datetime | None = None,
    account_filter: AccountFilter | None = None,
    structured_logger: StructuredLogger | None = None,
    persist: PersistCallback | None = None,
) -> RunReport:
    """Archive old inbox messages of every allowed account.

    Accounts are processed one at a time. Per-account and per-message
    failures end up in the report; they never abort the run.
    """
    started_at = normalize_timestamp(now or datetime.now())
    cutoff = compute_cutoff(started_at, config.retention_days)
    account_filter = account_filter or AccountFilter.from_config(config.accounts)
    audit = structured_logger or StructuredLogger()

    report = RunReport(started_at=started_at, cutoff=cutoff, simulate=config.simulate)

    mode = "SIMULATE" if config.simulate else "LIVE"
    logger.info(
        f"Archiving messages older than {config.retention_days} days "
        f"(before {cutoff:%Y-%m-%d %H:%M}), mode: {mode}"
    )

    store = ArchivePathStore(config.archive_paths, on_change=persist)
    locator = ArchiveLocator(
        store,
        archive_folder_name=config.archive_folder_name,
        label_name=config.label_name,
    )
    selector = CandidateSelector(include_meeting_items=config.include_meeting_items)
    engine = MoveDecisionEngine(cutoff, config.skip_rules, simulate=config.simulate)

    for account in _select_accounts(client, account_filter):
        account_report = _process_account(account, locator, selector, engine, audit)
        report.accounts.append(account_report)
        report.stats.merge(account_report.stats)

    logger.info(
        f"Run complete: {report.stats.processed} processed, "
        f"{report.stats.moved} moved, {report.stats.simulated} simulated, "
        f"{report.stats.skipped} skipped, {report.stats.too_recent} too recent, "
        f"{report.stats.errors} errors"
    )
    audit.log_run_summary(report.stats, config.simulate, cutoff)
    return report


def _process_account(
    account: Account,
    locator: ArchiveLocator,
    selector: CandidateSelector,
    engine: MoveDecisionEngine,
    audit: StructuredLogger,
) -> AccountReport:
    account_report = AccountReport(name=account.name)

    try:
        root = locator.require(account)
        account_report.archive_root = root.describe()
        logger.info(f"[{account.name}] Archive root: {root.describe()} ({account.kind.value} account)")

        selection = selector.select(account)
        account_report.unreadable = selection.unreadable
        account_report.duplicates = selection.duplicates
        if not selection.inbox_found:
            return _skip(account_report, AccountStatus.NO_INBOX, selection.error or "no inbox", audit)
        if selection.error is not None:
            return _skip(account_report, AccountStatus.ENUMERATION_FAILED, selection.error, audit)

        for candidate in selection.candidates:
            decision = engine.decide(candidate, account.name, root.folder)
            account_report.decisions.append(decision)
            account_report.stats.record(decision.outcome)
            audit.log_decision(decision, engine.simulate)

    except ArchiveRootNotFound:
        return _skip(account_report, AccountStatus.NO_ARCHIVE_ROOT, "no archive folder or label found", audit)
    except Exception as e:
        logger.error(f"[{account.name}] Processing failed: {e}", exc_info=True)
        account_report.status = AccountStatus.FAILED
        account_report.error = str(e)
        account_report.stats.accounts_skipped += 1
        audit.log_error("account", str(e), account=account.name)
        return account_report

    account_report.stats.accounts_processed += 1
    return account_report


def _skip(
    account_report: AccountReport,
    status: AccountStatus,
    reason: str,
    audit: StructuredLogger,
) -> AccountReport:
    logger.warning(f"[{account_report.name}] Skipping account: {reason}")
    account_report.status = status
    account_report.error = reason
    account_report.stats.accounts_skipped += 1
    audit.log_account_skipped(account_report.name, reason)
    return account_report


def discover_archive_roots(
    config: Config,
    client: MailClient,
    *,
    account_filter: AccountFilter | None = None,
    persist: PersistCallback | None = None,
) -> dict[str, Destination | None]:
    """Resolve the archive root of every allowed account without touching messages."""
    account_filter = account_filter or AccountFilter.from_config(config.accounts)
    store = ArchivePathStore(config.archive_paths, on_change=persist)
    locator = ArchiveLocator(
        store,
        archive_folder_name=config.archive_folder_name,
        label_name=config.label_name,
    )

    found: dict[str, Destination | None] = {}
    for account in _select_accounts(client, account_filter):
        root = locator.resolve(account)
        found[account.name] = root.destination if root else None
        if root is None:
            logger.warning(f"[{account.name}] No archive folder or label found")
    return found
