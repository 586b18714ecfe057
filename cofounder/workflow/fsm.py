"""Transition attempt state machine using transitions library.

One TransitionFSM tracks one invocation of the progression engine for one
branch update. Every state change is reported through on_transition so the
caller can journal it.

Usage:
    from cofounder.workflow.fsm import TransitionFSM

    fsm = TransitionFSM("acme", on_transition=journal_it)
    fsm.start()
    fsm.generate()
    fsm.reconcile()
    fsm.fail(detail="generator timed out")
"""

import logging
from typing import Callable

from transitions import Machine

logger = logging.getLogger(__name__)


STATES = [
    "idle",
    "evaluating",
    # Outcomes that end an invocation without a PR
    "incomplete",
    "skipped",
    # Work on the next stage
    "generating",
    "reconciling",
    "committing",
    "pr_open",
    "reviewing",
    # Outcomes with a PR
    "merged",
    "awaiting_manual",
    "failed",
]

FINAL_STATES = {"incomplete", "skipped", "merged", "awaiting_manual", "failed"}

ACTIVE_STATES = ["evaluating", "generating", "reconciling", "committing", "pr_open", "reviewing"]

TRANSITIONS = [
    {"trigger": "start", "source": "idle", "dest": "evaluating"},

    # Evaluation outcomes
    {"trigger": "not_ready", "source": "evaluating", "dest": "incomplete"},
    {"trigger": "skip", "source": "evaluating", "dest": "skipped"},
    {"trigger": "generate", "source": "evaluating", "dest": "generating"},

    # Generation pipeline
    {"trigger": "reconcile", "source": "generating", "dest": "reconciling"},
    {"trigger": "commit", "source": "reconciling", "dest": "committing"},
    {"trigger": "open_pr", "source": "committing", "dest": "pr_open"},
    {"trigger": "review", "source": "pr_open", "dest": "reviewing"},

    # Review outcomes
    {"trigger": "merge", "source": "reviewing", "dest": "merged"},
    {"trigger": "await_manual", "source": "reviewing", "dest": "awaiting_manual"},

    # Any active state can fail
    {"trigger": "fail", "source": ACTIVE_STATES, "dest": "failed"},
]


class TransitionFSM:
    """State machine for one transition attempt.

    Wraps the transitions library with engine-specific logic:
    - Starts in idle, ends in one of FINAL_STATES
    - Passes trigger kwargs (detail, pr_number, ...) to on_transition
    - Logs all transitions
    """

    def __init__(
        self,
        idea_id: str,
        on_transition: Callable[[str, str, str, dict], None] | None = None,
    ):
        """Initialize FSM for a transition attempt.

        Args:
            idea_id: Idea the attempt belongs to (for log lines)
            on_transition: Optional callback(from_state, to_state, trigger, kwargs)
        """
        self.idea_id = idea_id
        self.on_transition = on_transition

        self.machine = Machine(
            model=self,
            states=STATES,
            transitions=TRANSITIONS,
            initial="idle",
            auto_transitions=False,  # Only explicit transitions
            send_event=True,  # Pass EventData to callbacks
            after_state_change="on_state_change",
        )

    def on_state_change(self, event) -> None:
        from_state = event.transition.source
        to_state = event.transition.dest
        trigger = event.event.name
        detail = event.kwargs.get("detail", "")

        logger.info(
            f"[FSM] {self.idea_id}: {from_state} -> {to_state} ({trigger})"
            + (f": {detail}" if detail else "")
        )

        if self.on_transition:
            self.on_transition(from_state, to_state, trigger, dict(event.kwargs))

    @property
    def is_finished(self) -> bool:
        return self.state in FINAL_STATES

    def can(self, trigger: str) -> bool:
        """Check if a trigger can be executed in current state."""
        return trigger in self.machine.get_triggers(self.state)

    def get_available_triggers(self) -> list[str]:
        return self.machine.get_triggers(self.state)
