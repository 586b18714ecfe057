"""Engine wiring.

Builds a StageProgression for one idea from the home directory's
configuration, and maps outcomes and errors onto the exit codes shared by
the CLI and the Prefect flow.
"""

import logging
from pathlib import Path
from typing import Optional

from cofounder.agents.command import CommandGenerator, CommandReviewer
from cofounder.lib.agents_config import load_agents_config
from cofounder.lib.config import IdeaConfig, load_engine_profile
from cofounder.lib.constants import (
    EXIT_COLLABORATOR,
    EXIT_CONFIG,
    EXIT_INVARIANT,
    EXIT_LOCK_TIMEOUT,
    EXIT_NOT_READY,
    EXIT_OK,
    EXIT_RETRYABLE,
)
from cofounder.lib.errors import (
    CofounderError,
    CollaboratorFailure,
    InvalidDecision,
    InvariantViolation,
    MalformedArtifact,
)
from cofounder.lib.locking import LockTimeout
from cofounder.ledger.ledger import DecisionLedger
from cofounder.ledger.stages import branch_name
from cofounder.store.base import VersionedStore
from cofounder.store.github import GitHubStore
from .collaborators import PullRequestReviewer, StageContentGenerator
from .journal import TransitionJournal
from .progression import StageProgression, TransitionOutcome, TransitionStatus

logger = logging.getLogger(__name__)

# Outcomes that count as success for the caller; everything else is "not yet"
SUCCESS_STATUSES = {
    TransitionStatus.MERGED,
    TransitionStatus.IGNORED,
    TransitionStatus.TERMINAL,
    TransitionStatus.DUPLICATE,
}


def build_ledger(home: Path, idea: IdeaConfig, store: VersionedStore) -> DecisionLedger:
    profile = load_engine_profile(home)
    return DecisionLedger(
        store,
        idea.id,
        lock_home=home,
        revisit_threshold=profile.revisit_threshold,
        cas_attempts=profile.ledger_cas_attempts,
        lock_timeout=profile.lock_timeout,
    )


def build_engine(
    home: Path,
    idea: IdeaConfig,
    store: Optional[VersionedStore] = None,
    generator: Optional[StageContentGenerator] = None,
    reviewer: Optional[PullRequestReviewer] = None,
) -> StageProgression:
    """Assemble the engine for an idea. Collaborators default to the agent CLIs."""
    profile = load_engine_profile(home)
    store = store or GitHubStore(idea.repo, idea.default_branch)
    agents = load_agents_config(home)
    log_dir = idea.dir / "logs"

    return StageProgression(
        store=store,
        ledger=build_ledger(home, idea, store),
        generator=generator or CommandGenerator(idea.repo, agents, profile.generate_timeout, log_dir),
        reviewer=reviewer or CommandReviewer(store, agents, profile.review_timeout, log_dir),
        journal=TransitionJournal(idea.dir),
        profile=profile,
        lock_home=home,
    )


def exit_code_for_error(error: BaseException) -> int:
    if isinstance(error, LockTimeout):
        return EXIT_LOCK_TIMEOUT
    if isinstance(error, CollaboratorFailure):
        return EXIT_COLLABORATOR
    if isinstance(error, (InvariantViolation, MalformedArtifact)):
        return EXIT_INVARIANT
    if isinstance(error, InvalidDecision):
        return EXIT_CONFIG
    if isinstance(error, CofounderError) and error.retryable:
        return EXIT_RETRYABLE
    return EXIT_CONFIG


def exit_code_for_outcome(outcome: TransitionOutcome) -> int:
    return EXIT_OK if outcome.status in SUCCESS_STATUSES else EXIT_NOT_READY


def outcome_summary(outcome: TransitionOutcome) -> dict:
    """JSON-friendly view of an outcome."""
    return {
        "status": outcome.status.value,
        "exit_code": exit_code_for_outcome(outcome),
        "stage": branch_name(outcome.stage) if outcome.stage else None,
        "next_stage": branch_name(outcome.next_stage) if outcome.next_stage else None,
        "pr_number": outcome.pr.number if outcome.pr else None,
        "pr_url": outcome.pr.url if outcome.pr else None,
        "committed": list(outcome.committed),
        "decisions": [
            {"name": o.decision.name, "chosen": o.decision.chosen, "was_new": o.was_new}
            for o in outcome.decisions
        ],
        "detail": outcome.detail,
    }
