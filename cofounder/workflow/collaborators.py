"""External collaborator contracts.

The engine needs exactly two capabilities it does not implement itself:
something that writes the next stage's content, and something that reviews
a transition PR. Both are single-method interfaces so tests can plug in
deterministic fakes.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Sequence

from cofounder.ledger.artifacts import ArtifactSet
from cofounder.ledger.decisions import Decision, ProposedDecision
from cofounder.ledger.stages import Stage
from cofounder.store.base import PullRequest


@dataclass
class GeneratedContent:
    files: dict[str, str]
    decisions: list[ProposedDecision] = field(default_factory=list)
    summary: str = ""


@dataclass
class ReviewVerdict:
    approved: bool
    confidence: float
    notes: str = ""


class StageContentGenerator(ABC):

    @abstractmethod
    def generate(
        self,
        stage: Stage,
        next_stage: Stage,
        artifacts: ArtifactSet,
        decisions: Sequence[Decision] = (),
    ) -> GeneratedContent:
        """Produce next_stage content from stage's artifacts.

        decisions are the active ledger decisions, so a generator can avoid
        proposing what is already settled. Raises GeneratorFailure.
        """


class PullRequestReviewer(ABC):

    @abstractmethod
    def review(self, pr: PullRequest) -> ReviewVerdict:
        """Judge a transition PR. Raises ReviewerFailure."""
