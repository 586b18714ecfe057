"""Tests for cofounder.ledger.ledger module."""

import threading
from dataclasses import replace

import pytest

from conftest import IDEA_ID, REPO
from cofounder.lib.constants import DECISION_LOG_PATH
from cofounder.lib.errors import ConflictingWrite, InvalidDecision, InvariantViolation
from cofounder.ledger.decisions import (
    Decision,
    DecisionType,
    ProposedDecision,
    append_to_log,
    format_decision_record,
    parse_decision_log,
)
from cofounder.ledger.ledger import DecisionLedger
from cofounder.ledger.stages import (
    ANALYSIS,
    DESIGN,
    IMPLEMENTATION_STABLE,
    REQUIREMENTS,
    STAGE_BRANCHES,
)
from cofounder.store.memory import InMemoryStore


def _proposal(name="use-database", chosen="PostgreSQL", revisit=0.05, **kwargs):
    return ProposedDecision(
        name=name,
        type=DecisionType.TECHNOLOGY_CHOICE,
        alternatives=("PostgreSQL", "MongoDB"),
        chosen=chosen,
        reason="Relational data with strong consistency needs",
        confidence=0.85,
        revisit_probability=revisit,
        **kwargs,
    )


def _record_text(branch, seq, name="use-cache", chosen="Redis", reverses=None, timestamp="2026-01-01T00:00:00+00:00"):
    decision = Decision(
        name=name,
        type=DecisionType.TECHNOLOGY_CHOICE,
        alternatives=("Redis", "Memcached"),
        chosen=chosen,
        reason="Fast",
        confidence=0.7,
        revisit_probability=0.2,
        stage_branch=branch,
        seq=seq,
        timestamp=timestamp,
        reverses=reverses,
    )
    return format_decision_record(decision)


class RacingStore(InMemoryStore):
    """Lands a queued foreign write just before each of our writes."""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.races: list[tuple[str, str]] = []

    def write_file(self, branch, path, content, message, expected_sha=None):
        if self.races:
            race_branch, record = self.races.pop(0)
            current = self.read_file_optional(race_branch, path)
            super().write_file(
                race_branch, path,
                append_to_log(current.content if current else None, record),
                record,
                expected_sha=current.sha if current else None,
            )
        return super().write_file(branch, path, content, message, expected_sha)


@pytest.fixture
def racing_store():
    s = RacingStore(repo=REPO)
    root = s.get_branch_head("main").sha
    for branch in STAGE_BRANCHES:
        s.create_branch(branch, root)
    return s


class TestRecordDecision:

    def test_new_decision_is_one_commit(self, ledger, store):
        before = len(store.list_commits("analysis"))

        outcome = ledger.record_decision(ANALYSIS, _proposal())

        assert outcome.was_new and not outcome.reused
        assert outcome.decision.record_id == "analysis#1"
        assert outcome.decision.commit_sha == store.get_branch_head("analysis").sha
        commits = store.list_commits("analysis")
        assert len(commits) == before + 1
        assert commits[0].message == format_decision_record(outcome.decision)
        log = store.read_file("analysis", DECISION_LOG_PATH).content
        assert parse_decision_log(log, "analysis") == [replace(outcome.decision, commit_sha="")]

    def test_sequence_numbers_follow_log_position(self, ledger):
        first = ledger.record_decision(ANALYSIS, _proposal())
        second = ledger.record_decision(ANALYSIS, _proposal(name="use-cache", chosen="Redis"))

        assert first.decision.seq == 1
        assert second.decision.seq == 2

    def test_use_database_is_reused_against_new_proposal(self, ledger, store):
        ledger.record_decision(ANALYSIS, _proposal(chosen="PostgreSQL", revisit=0.05))
        design_head = store.get_branch_head("design").sha

        outcome = ledger.record_decision(DESIGN, _proposal(chosen="MongoDB"), blocked_by="")

        assert outcome.reused and not outcome.was_new
        assert outcome.decision.chosen == "PostgreSQL"
        assert outcome.decision.record_id == "analysis#1"
        assert store.get_branch_head("design").sha == design_head

    def test_low_revisit_is_reused_even_when_blocked(self, ledger):
        ledger.record_decision(ANALYSIS, _proposal(revisit=0.3))

        outcome = ledger.record_decision(DESIGN, _proposal(chosen="MongoDB"), blocked_by="schema churn")

        assert outcome.reused
        assert outcome.decision.chosen == "PostgreSQL"

    def test_high_revisit_without_blocking_signal_is_reused(self, ledger):
        ledger.record_decision(ANALYSIS, _proposal(revisit=0.9))

        outcome = ledger.record_decision(DESIGN, _proposal(chosen="MongoDB"))

        assert outcome.reused

    def test_high_revisit_with_blocking_signal_appends_reversal(self, ledger):
        original = ledger.record_decision(ANALYSIS, _proposal(revisit=0.9)).decision

        outcome = ledger.record_decision(DESIGN, _proposal(chosen="MongoDB"), blocked_by="need flexible schema")

        assert outcome.was_new
        reversal = outcome.decision
        assert reversal.reverses == original.record_id
        assert reversal.is_reversal
        assert reversal.context == "Blocked: need flexible schema"
        assert reversal.stage_branch == "design"
        assert ledger.find_decision("use-database").chosen == "MongoDB"
        assert [d.chosen for d in ledger.history("use-database")] == ["PostgreSQL", "MongoDB"]

    def test_blocking_signal_can_come_from_the_proposal(self, ledger):
        ledger.record_decision(ANALYSIS, _proposal(revisit=0.9))

        outcome = ledger.record_decision(DESIGN, _proposal(chosen="MongoDB", blocked_by="goal blocked"))

        assert outcome.was_new
        assert outcome.decision.reverses == "analysis#1"

    def test_stable_substage_takes_no_decisions(self, ledger):
        with pytest.raises(InvalidDecision, match="does not accept"):
            ledger.record_decision(IMPLEMENTATION_STABLE, _proposal())

    def test_invalid_proposal_rejected_before_any_write(self, ledger, store):
        head = store.get_branch_head("analysis").sha
        with pytest.raises(InvalidDecision):
            ledger.record_decision(ANALYSIS, _proposal(revisit=1.5))
        assert store.get_branch_head("analysis").sha == head

    def test_name_is_normalized(self, ledger):
        outcome = ledger.record_decision(ANALYSIS, _proposal(name="Use Database"))
        assert outcome.decision.name == "use-database"
        assert ledger.find_decision("use database") is not None


class TestCompareAndSwap:

    def test_lost_race_is_retried_with_fresh_read(self, racing_store, clock):
        ledger = DecisionLedger(racing_store, IDEA_ID, clock=clock)
        racing_store.races.append(("analysis", _record_text("analysis", 1)))

        outcome = ledger.record_decision(ANALYSIS, _proposal())

        assert outcome.was_new
        assert outcome.decision.record_id == "analysis#2"
        log = racing_store.read_file("analysis", DECISION_LOG_PATH).content
        assert [d.name for d in parse_decision_log(log, "analysis")] == ["use-cache", "use-database"]

    def test_exhausted_attempts_raise_conflicting_write(self, racing_store, clock):
        ledger = DecisionLedger(racing_store, IDEA_ID, cas_attempts=2, clock=clock)
        racing_store.races.extend([
            ("analysis", _record_text("analysis", 1, name="use-cache")),
            ("analysis", _record_text("analysis", 2, name="use-queue", chosen="SQS")),
        ])

        with pytest.raises(ConflictingWrite, match="after 2 attempts"):
            ledger.record_decision(ANALYSIS, _proposal())

        log = racing_store.read_file("analysis", DECISION_LOG_PATH).content
        assert "use-database" not in log

    def test_race_that_records_same_name_turns_into_reuse(self, racing_store, clock):
        ledger = DecisionLedger(racing_store, IDEA_ID, clock=clock)
        racing_store.races.append(
            ("analysis", _record_text("analysis", 1, name="use-database", chosen="SQLite"))
        )

        outcome = ledger.record_decision(ANALYSIS, _proposal())

        assert outcome.reused
        assert outcome.decision.chosen == "SQLite"


class TestConcurrency:

    @pytest.mark.parametrize("use_file_lock", [False, True])
    def test_concurrent_distinct_decisions_all_land(self, store, clock, tmp_path, use_file_lock):
        ledger = DecisionLedger(store, IDEA_ID, lock_home=tmp_path if use_file_lock else None, clock=clock)
        errors = []

        def record(i):
            try:
                ledger.record_decision(ANALYSIS, _proposal(name=f"decision-{i}", chosen="PostgreSQL"))
            except Exception as e:
                errors.append(e)

        threads = [threading.Thread(target=record, args=(i,)) for i in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert errors == []
        log = store.read_file("analysis", DECISION_LOG_PATH).content
        decisions = parse_decision_log(log, "analysis")
        assert sorted(d.name for d in decisions) == sorted(f"decision-{i}" for i in range(8))
        assert [d.seq for d in decisions] == list(range(1, 9))

    def test_concurrent_same_name_records_once(self, ledger):
        outcomes = []

        def record(chosen):
            outcomes.append(ledger.record_decision(ANALYSIS, _proposal(chosen=chosen)))

        threads = [threading.Thread(target=record, args=(c,)) for c in ("PostgreSQL", "MongoDB", "SQLite")]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert sum(o.was_new for o in outcomes) == 1
        assert len({o.decision.chosen for o in outcomes}) == 1
        assert len(ledger.history("use-database")) == 1


class TestReads:

    def test_find_decision_missing(self, ledger):
        assert ledger.find_decision("use-database") is None

    def test_merged_copies_count_once(self, ledger, store):
        ledger.record_decision(ANALYSIS, _proposal())
        pr = store.open_pull_request("analysis", "design", "analysis → design", "")
        store.merge_pull_request(pr, "merge")

        assert ledger.find_decision("use-database").record_id == "analysis#1"
        assert len(ledger.history("use-database")) == 1
        assert len(ledger.active_decisions()) == 1

    def test_reversal_of_merged_copy_resolves_to_origin(self, ledger, store):
        ledger.record_decision(ANALYSIS, _proposal(revisit=0.9))
        store.merge_pull_request(store.open_pull_request("analysis", "design", "t", ""), "merge")

        # The design copy sits at design#1; a reversal pointing at it still supersedes analysis#1
        log = store.read_file("design", DECISION_LOG_PATH)
        reversal = _record_text("design", 2, name="use-database", chosen="MongoDB", reverses="design#1",
                                timestamp="2026-02-01T00:00:00+00:00")
        store.write_file("design", DECISION_LOG_PATH, append_to_log(log.content, reversal), reversal, log.sha)

        assert ledger.find_decision("use-database").chosen == "MongoDB"

    def test_two_active_records_is_invariant_violation(self, ledger, store):
        for branch in ("analysis", "design"):
            text = append_to_log(None, _record_text(branch, 1, chosen=f"Redis-{branch}"))
            store.write_file(branch, DECISION_LOG_PATH, text, "seed")

        with pytest.raises(InvariantViolation, match="2 active records"):
            ledger.find_decision("use-cache")

    def test_reversal_of_unknown_record_is_invariant_violation(self, ledger, store):
        text = append_to_log(None, _record_text("analysis", 1, reverses="requirements#7"))
        store.write_file("analysis", DECISION_LOG_PATH, text, "seed")

        with pytest.raises(InvariantViolation, match="requirements#7"):
            ledger.find_decision("use-cache")

    def test_active_decisions_skips_superseded(self, ledger):
        ledger.record_decision(REQUIREMENTS, _proposal(name="target-market", chosen="Founders"))
        ledger.record_decision(ANALYSIS, _proposal(revisit=0.9))
        ledger.record_decision(DESIGN, _proposal(chosen="MongoDB"), blocked_by="scale")

        active = {d.name: d.chosen for d in ledger.active_decisions()}

        assert active == {"target-market": "Founders", "use-database": "MongoDB"}

    def test_decision_commits_parse_commit_messages(self, ledger, store):
        first = ledger.record_decision(ANALYSIS, _proposal()).decision
        second = ledger.record_decision(ANALYSIS, _proposal(name="use-cache", chosen="Redis")).decision

        commits = ledger.decision_commits(ANALYSIS)

        assert [d.name for d in commits] == ["use-database", "use-cache"]
        assert [d.commit_sha for d in commits] == [first.commit_sha, second.commit_sha]
        assert commits[0].chosen == "PostgreSQL"
