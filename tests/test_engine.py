"""Tests for the move decision engine."""

from datetime import datetime, timedelta, timezone

import pytest

from fakes import FakeMessage, make_account

from mailarchiver.config import SkipRule
from mailarchiver.engine import (
    MessageDecision,
    MoveDecisionEngine,
    Outcome,
    RunStats,
    container_names,
)
from mailarchiver.selector import Candidate

CUTOFF = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)


def candidate_in(folder, subject, received, **kwargs):
    message = folder.add_message(FakeMessage(subject, received, **kwargs))
    return Candidate(subject=subject, received_time=received, handle=message)


@pytest.fixture
def account():
    return make_account("A")


@pytest.fixture
def inbox(account):
    return account.root.folder("Inbox")


@pytest.fixture
def archive_root(account):
    return account.root.folder("Archive")


class TestCutoff:
    """Tests for the retention cutoff."""

    def test_older_than_cutoff_archived(self, inbox, archive_root):
        engine = MoveDecisionEngine(CUTOFF, [], simulate=False)
        c = candidate_in(inbox, "old", CUTOFF - timedelta(seconds=1))

        decision = engine.decide(c, "A", archive_root)

        assert decision.outcome == Outcome.MOVED
        assert decision.destination == "Archive/2024/2024-06"

    def test_equal_to_cutoff_is_too_recent(self, inbox, archive_root):
        engine = MoveDecisionEngine(CUTOFF, [], simulate=False)
        c = candidate_in(inbox, "boundary", CUTOFF)

        decision = engine.decide(c, "A", archive_root)

        assert decision.outcome == Outcome.TOO_RECENT
        assert decision.destination is None
        assert inbox.log.moved == []

    def test_newer_than_cutoff_is_too_recent(self, inbox, archive_root):
        engine = MoveDecisionEngine(CUTOFF, [], simulate=False)
        c = candidate_in(inbox, "new", CUTOFF + timedelta(days=3))

        assert engine.decide(c, "A", archive_root).outcome == Outcome.TOO_RECENT

    def test_cutoff_compared_as_instants(self, inbox, archive_root):
        engine = MoveDecisionEngine(CUTOFF, [], simulate=True)
        # 13:30 at +02:00 is 11:30 UTC, before the cutoff
        received = datetime(2024, 6, 1, 13, 30, tzinfo=timezone(timedelta(hours=2)))
        c = candidate_in(inbox, "tz", received)

        assert engine.decide(c, "A", archive_root).outcome == Outcome.MOVED_SIMULATED


class TestSkipRules:
    """Tests for per-account skip rules."""

    def test_skip_rule_wins_over_age(self, inbox, archive_root):
        rules = [SkipRule(account_name="A", subject_substrings=["[KEEP]"])]
        engine = MoveDecisionEngine(CUTOFF, rules, simulate=False)
        c = candidate_in(inbox, "Contract [KEEP]", CUTOFF - timedelta(days=400))

        decision = engine.decide(c, "A", archive_root)

        assert decision.outcome == Outcome.SKIPPED
        assert decision.matched_rule == "[KEEP]"
        assert inbox.log.moved == []
        assert inbox.log.created == []

    def test_skip_rule_applies_to_recent_messages(self, inbox, archive_root):
        rules = [SkipRule(account_name="A", subject_substrings=["payslip"])]
        engine = MoveDecisionEngine(CUTOFF, rules)
        c = candidate_in(inbox, "Your Payslip for May", CUTOFF + timedelta(days=1))

        assert engine.decide(c, "A", archive_root).outcome == Outcome.SKIPPED

    def test_rules_scoped_to_their_account(self, inbox, archive_root):
        rules = [SkipRule(account_name="B", subject_substrings=["[KEEP]"])]
        engine = MoveDecisionEngine(CUTOFF, rules, simulate=False)
        c = candidate_in(inbox, "Contract [KEEP]", CUTOFF - timedelta(days=2))

        decision = engine.decide(c, "A", archive_root)

        assert decision.outcome == Outcome.MOVED
        assert decision.matched_rule is None

    def test_case_sensitive_rule(self, inbox, archive_root):
        rules = [SkipRule(account_name="A", subject_substrings=["KEEP"], case_sensitive=True)]
        engine = MoveDecisionEngine(CUTOFF, rules)
        c = candidate_in(inbox, "please keep", CUTOFF - timedelta(days=2))

        assert engine.decide(c, "A", archive_root).outcome == Outcome.MOVED_SIMULATED


class TestSimulate:
    """Tests for simulate mode."""

    def test_no_side_effects(self, inbox, archive_root):
        engine = MoveDecisionEngine(CUTOFF, [], simulate=True)
        candidates = [
            candidate_in(inbox, "one", datetime(2023, 3, 10, tzinfo=timezone.utc)),
            candidate_in(inbox, "two", datetime(2024, 1, 5, tzinfo=timezone.utc)),
        ]

        decisions = [engine.decide(c, "A", archive_root) for c in candidates]

        assert [d.outcome for d in decisions] == [Outcome.MOVED_SIMULATED] * 2
        assert [d.destination for d in decisions] == [
            "Archive/2023/2023-03",
            "Archive/2024/2024-01",
        ]
        assert inbox.log.created == []
        assert inbox.log.moved == []
        assert len(inbox.items) == 2

    def test_engine_defaults_to_simulate(self):
        assert MoveDecisionEngine(CUTOFF, []).simulate is True


class TestContainers:
    """Tests for year/month container handling."""

    def test_container_names(self):
        assert container_names(datetime(2023, 2, 28, 23, 59)) == ("2023", "2023-02")
        assert container_names(datetime(987, 11, 1)) == ("0987", "0987-11")

    def test_named_after_message_date(self, inbox, archive_root):
        engine = MoveDecisionEngine(CUTOFF, [], simulate=False)
        c = candidate_in(inbox, "last year", datetime(2023, 12, 31, 8, 0, tzinfo=timezone.utc))

        engine.decide(c, "A", archive_root)

        assert inbox.log.created == ["A/Archive/2023", "A/Archive/2023/2023-12"]
        assert inbox.log.moved == [("last year", "A/Archive/2023/2023-12")]
        assert archive_root.folder("2023").folder("2023-12").items[0].subject == "last year"

    def test_existing_containers_reused(self, inbox, archive_root):
        archive_root.folder("2024").folder("2024-03")
        engine = MoveDecisionEngine(CUTOFF, [], simulate=False)
        c = candidate_in(inbox, "march", datetime(2024, 3, 3, tzinfo=timezone.utc))

        decision = engine.decide(c, "A", archive_root)

        assert decision.outcome == Outcome.MOVED
        assert inbox.log.created == []

    def test_containers_created_once(self, inbox, archive_root):
        engine = MoveDecisionEngine(CUTOFF, [], simulate=False)
        for day in (1, 2, 3):
            c = candidate_in(inbox, f"msg {day}", datetime(2024, 4, day, tzinfo=timezone.utc))
            assert engine.decide(c, "A", archive_root).outcome == Outcome.MOVED

        assert inbox.log.created == ["A/Archive/2024", "A/Archive/2024/2024-04"]
        assert archive_root.count("2024") == 1
        assert len(archive_root.folder("2024").folder("2024-04").items) == 3

    def test_second_engine_finds_existing_containers(self, inbox, archive_root):
        received = datetime(2024, 2, 2, tzinfo=timezone.utc)
        first = MoveDecisionEngine(CUTOFF, [], simulate=False)
        first.decide(candidate_in(inbox, "a", received), "A", archive_root)

        second = MoveDecisionEngine(CUTOFF, [], simulate=False)
        second.decide(candidate_in(inbox, "b", received), "A", archive_root)

        assert inbox.log.created == ["A/Archive/2024", "A/Archive/2024/2024-02"]
        assert archive_root.folder("2024").count("2024-02") == 1

    def test_container_cache_keyed_per_account(self):
        a = make_account("A")
        b = make_account("B")
        engine = MoveDecisionEngine(CUTOFF, [], simulate=False)
        received = datetime(2024, 5, 5, tzinfo=timezone.utc)

        engine.decide(candidate_in(a.root.folder("Inbox"), "x", received), "A", a.root.folder("Archive"))
        engine.decide(candidate_in(b.root.folder("Inbox"), "y", received), "B", b.root.folder("Archive"))

        assert a.root.log.moved == [("x", "A/Archive/2024/2024-05")]
        assert b.root.log.moved == [("y", "B/Archive/2024/2024-05")]

    def test_container_failure_is_message_error(self, inbox, archive_root):
        archive_root.fail_create = True
        engine = MoveDecisionEngine(CUTOFF, [], simulate=False)
        c = candidate_in(inbox, "stuck", datetime(2024, 1, 1, tzinfo=timezone.utc))

        decision = engine.decide(c, "A", archive_root)

        assert decision.outcome == Outcome.ERROR
        assert "Archive/2024/2024-01" in decision.error
        assert inbox.items == [c.handle]

    def test_move_failure_does_not_stop_processing(self, inbox, archive_root):
        engine = MoveDecisionEngine(CUTOFF, [], simulate=False)
        received = datetime(2024, 1, 1, tzinfo=timezone.utc)
        bad = candidate_in(inbox, "bad", received, fail_move=True)
        good = candidate_in(inbox, "good", received + timedelta(hours=1))

        outcomes = [engine.decide(c, "A", archive_root).outcome for c in (bad, good)]

        assert outcomes == [Outcome.ERROR, Outcome.MOVED]
        assert inbox.log.moved == [("good", "A/Archive/2024/2024-01")]


class TestRunStats:
    """Tests for RunStats counters."""

    def test_record(self):
        stats = RunStats()
        for outcome in (Outcome.MOVED, Outcome.MOVED, Outcome.SKIPPED, Outcome.TOO_RECENT, Outcome.ERROR):
            stats.record(outcome)

        assert stats.processed == 5
        assert stats.moved == 2
        assert stats.skipped == 1
        assert stats.too_recent == 1
        assert stats.errors == 1
        assert stats.simulated == 0

    def test_merge(self):
        a = RunStats(accounts_processed=1, processed=3, moved=2, errors=1)
        b = RunStats(accounts_skipped=1, processed=2, simulated=2)

        merged = a.merge(b)

        assert merged is a
        assert a.to_dict() == {
            "accounts_processed": 1,
            "accounts_skipped": 1,
            "processed": 5,
            "moved": 2,
            "simulated": 2,
            "skipped": 0,
            "too_recent": 0,
            "errors": 1,
        }


class TestMessageDecision:
    def test_to_dict(self):
        decision = MessageDecision(
            account="A",
            subject="Hello",
            received_time=datetime(2024, 1, 1, tzinfo=timezone.utc),
            outcome=Outcome.MOVED,
            destination="Archive/2024/2024-01",
        )

        data = decision.to_dict()

        assert data["outcome"] == "moved"
        assert data["received_time"] == "2024-01-01T00:00:00+00:00"
        assert data["error"] is None
