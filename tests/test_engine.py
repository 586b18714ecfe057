"""Tests for cofounder.workflow.engine module."""

import pytest

from conftest import COMPLETE_FILES, FakeGenerator, FakeReviewer, seed
from cofounder.agents.command import CommandGenerator, CommandReviewer
from cofounder.lib.config import IdeaConfig, idea_dir
from cofounder.lib.errors import (
    ConflictingWrite,
    GeneratorTimeout,
    InvalidDecision,
    InvariantViolation,
    MalformedArtifact,
    NotFound,
    PermissionDenied,
    ReviewerFailure,
    StoreUnavailable,
)
from cofounder.lib.locking import LockTimeout
from cofounder.ledger.decisions import DecisionType, ProposedDecision
from cofounder.ledger.stages import ANALYSIS, DESIGN
from cofounder.store.base import PullRequest
from cofounder.workflow.engine import (
    build_engine,
    exit_code_for_error,
    exit_code_for_outcome,
    outcome_summary,
)
from cofounder.workflow.progression import TransitionOutcome, TransitionStatus


@pytest.fixture
def idea(tmp_path):
    return IdeaConfig(
        id="acme",
        name="Acme",
        description="",
        repo="acme/idea-acme",
        created_at="2026-01-05T10:00:00+00:00",
        default_branch="main",
        dir=idea_dir(tmp_path, "acme"),
    )


class TestBuildEngine:

    def test_defaults_to_agent_collaborators(self, tmp_path, idea, store):
        engine = build_engine(tmp_path, idea, store=store)

        assert isinstance(engine.generator, CommandGenerator)
        assert isinstance(engine.reviewer, CommandReviewer)
        assert engine.generator.log_dir == idea.dir / "logs"
        assert engine.reviewer.store is store
        assert engine.journal.path == idea.dir / "transitions.jsonl"
        assert engine.lock_home == tmp_path
        assert engine.ledger.lock_home == tmp_path

    def test_reads_engine_env(self, tmp_path, idea, store):
        (tmp_path / "engine.env").write_text(
            'GENERATE_TIMEOUT="42"\nREVISIT_THRESHOLD="0.5"\nLEDGER_CAS_ATTEMPTS="7"\n'
        )

        engine = build_engine(tmp_path, idea, store=store)

        assert engine.profile.generate_timeout == 42.0
        assert engine.generator.timeout == 42.0
        assert engine.ledger.revisit_threshold == 0.5
        assert engine.ledger.cas_attempts == 7

    def test_runs_a_transition_with_journal_on_disk(self, tmp_path, idea, store):
        (tmp_path / "engine.env").write_text('NOTIFY="false"\nGENERATE_TIMEOUT="5"\nREVIEW_TIMEOUT="5"\n')
        seed(store, "requirements", COMPLETE_FILES["requirements"])
        seed(store, "analysis", COMPLETE_FILES["analysis"])
        engine = build_engine(tmp_path, idea, store=store, generator=FakeGenerator(), reviewer=FakeReviewer())

        outcome = engine.handle_branch_update("analysis")

        assert outcome.status is TransitionStatus.MERGED
        assert (idea.dir / "transitions.jsonl").exists()
        assert (tmp_path / "locks" / "transition" / "acme.lock").exists()


class TestExitCodes:

    @pytest.mark.parametrize("error,code", [
        (LockTimeout("busy"), 6),
        (GeneratorTimeout("slow"), 4),
        (ReviewerFailure("bad reply"), 4),
        (InvariantViolation("two active"), 5),
        (MalformedArtifact("DECISIONS.log", "bad"), 5),
        (InvalidDecision("bad name"), 2),
        (StoreUnavailable("502"), 3),
        (ConflictingWrite("moved"), 3),
        (NotFound("gone"), 2),
        (PermissionDenied("403"), 2),
        (RuntimeError("bug"), 2),
    ])
    def test_error_codes(self, error, code):
        assert exit_code_for_error(error) == code

    @pytest.mark.parametrize("status,code", [
        (TransitionStatus.MERGED, 0),
        (TransitionStatus.DUPLICATE, 0),
        (TransitionStatus.IGNORED, 0),
        (TransitionStatus.TERMINAL, 0),
        (TransitionStatus.INCOMPLETE, 1),
        (TransitionStatus.BLOCKED_UPSTREAM, 1),
        (TransitionStatus.PROMOTION_PENDING, 1),
        (TransitionStatus.AWAITING_MANUAL, 1),
    ])
    def test_outcome_codes(self, status, code):
        assert exit_code_for_outcome(TransitionOutcome(status)) == code


class TestOutcomeSummary:

    def test_ignored(self):
        summary = outcome_summary(TransitionOutcome(TransitionStatus.IGNORED, detail="main is not a stage branch"))
        assert summary == {
            "status": "ignored",
            "exit_code": 0,
            "stage": None,
            "next_stage": None,
            "pr_number": None,
            "pr_url": None,
            "committed": [],
            "decisions": [],
            "detail": "main is not a stage branch",
        }

    def test_merged_with_decision(self, ledger):
        recorded = ledger.record_decision(DESIGN, ProposedDecision(
            name="use-database", type=DecisionType.TECHNOLOGY_CHOICE,
            alternatives=("PostgreSQL", "SQLite"), chosen="PostgreSQL", reason="Writers",
            confidence=0.8, revisit_probability=0.1,
        ))
        outcome = TransitionOutcome(
            TransitionStatus.MERGED,
            stage=ANALYSIS,
            next_stage=DESIGN,
            pr=PullRequest(number=4, head="design", base="implementation/develop", title="t", url="u"),
            decisions=[recorded],
            committed=["UX_DESIGN.md"],
        )

        summary = outcome_summary(outcome)

        assert summary["stage"] == "analysis"
        assert summary["next_stage"] == "design"
        assert summary["pr_number"] == 4
        assert summary["decisions"] == [{"name": "use-database", "chosen": "PostgreSQL", "was_new": True}]
