"""Prefect flow for branch-update triggers.

One flow run handles one trigger delivery. Delivery is at-least-once, so the
flow may run twice for the same push; the engine makes the second run a
no-op. The flow itself never retries: retry policy belongs to whatever
delivers the trigger.
"""

import logging
from pathlib import Path
from typing import Optional

from prefect import flow, get_run_logger
from prefect.exceptions import MissingContextError
from pydantic import BaseModel

from cofounder.lib.config import find_idea_by_repo, get_home
from cofounder.lib.constants import EXIT_OK
from cofounder.lib.errors import CofounderError
from cofounder.lib.locking import LockTimeout
from .engine import build_engine, exit_code_for_error, outcome_summary

logger = logging.getLogger(__name__)


class BranchUpdateEvent(BaseModel):
    """A branch was updated in an idea repository."""
    repo: str  # owner/name
    ref: str   # branch name or refs/heads/<branch>
    after: Optional[str] = None

    @classmethod
    def from_github_push(cls, payload: dict) -> "BranchUpdateEvent":
        """Build from a GitHub push webhook payload."""
        return cls(
            repo=payload["repository"]["full_name"],
            ref=payload["ref"],
            after=payload.get("after"),
        )

    @property
    def branch(self) -> str:
        return self.ref[len("refs/heads/"):] if self.ref.startswith("refs/heads/") else self.ref


def parse_event(data: dict) -> BranchUpdateEvent:
    """Accept either {repo, ref} or a GitHub push payload.

    Raises:
        pydantic.ValidationError, KeyError: payload is neither
    """
    if "repository" in data:
        return BranchUpdateEvent.from_github_push(data)
    return BranchUpdateEvent.model_validate(data)


def _run_logger():
    try:
        return get_run_logger()
    except MissingContextError:
        return logger


@flow(
    name="stage-transition",
    retries=0,
)
def stage_transition_flow(event: dict, home: Optional[str] = None) -> dict:
    """Run one transition attempt for a branch-update event.

    Args:
        event: {repo, ref[, after]} or a GitHub push payload
        home: cofounder home directory (defaults to $COFOUNDER_HOME)

    Returns:
        Dict with status, exit_code and outcome details
    """
    log = _run_logger()
    trigger = parse_event(event)
    home_path = Path(home) if home else get_home()

    idea = find_idea_by_repo(home_path, trigger.repo)
    if idea is None:
        log.warning(f"No idea registered for {trigger.repo}, ignoring {trigger.ref}")
        return {"status": "ignored", "exit_code": EXIT_OK, "detail": f"unknown repository {trigger.repo}"}

    log.info(f"Branch update: {idea.id} {trigger.branch}" + (f" @ {trigger.after[:8]}" if trigger.after else ""))
    engine = build_engine(home_path, idea)

    try:
        outcome = engine.handle_branch_update(trigger.branch)
    except (CofounderError, LockTimeout) as e:
        log.error(f"Transition failed for {idea.id} {trigger.branch}: {e}")
        return {
            "status": "failed",
            "exit_code": exit_code_for_error(e),
            "error": str(e),
            "retryable": getattr(e, "retryable", True),
        }

    summary = outcome_summary(outcome)
    log.info(f"Transition outcome for {idea.id}: {summary['status']} {summary['detail']}")
    return summary
