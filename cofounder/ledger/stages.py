"""Waterfall stages and their branches.

A stage is either a SimpleStage or one of the two implementation sub-stages.
Order, successor and branch mapping are total over that variant, so no caller
ever splits branch names by hand.

Usage:
    from cofounder.ledger.stages import parse_branch, successor

    stage = parse_branch("refs/heads/analysis")
    nxt = successor(stage)          # SimpleStage(DESIGN)
    branch_name(nxt)                # "design"
"""

from dataclasses import dataclass
from enum import Enum
from typing import Union


class StageName(Enum):
    REQUIREMENTS = "requirements"
    ANALYSIS = "analysis"
    DESIGN = "design"
    IMPLEMENTATION = "implementation"
    TESTING = "testing"
    VALIDATION = "validation"
    DEPLOYMENT = "deployment"


class Substage(Enum):
    """Implementation sub-stages. Only ACTIVE accepts new decisions."""
    ACTIVE = "active"
    STABLE = "stable"


@dataclass(frozen=True)
class SimpleStage:
    name: StageName

    def __post_init__(self):
        if self.name is StageName.IMPLEMENTATION:
            raise ValueError("implementation is split; use ImplementationSubstage")

    def __str__(self):
        return branch_name(self)


@dataclass(frozen=True)
class ImplementationSubstage:
    substage: Substage

    def __str__(self):
        return branch_name(self)


Stage = Union[SimpleStage, ImplementationSubstage]

REQUIREMENTS = SimpleStage(StageName.REQUIREMENTS)
ANALYSIS = SimpleStage(StageName.ANALYSIS)
DESIGN = SimpleStage(StageName.DESIGN)
IMPLEMENTATION_ACTIVE = ImplementationSubstage(Substage.ACTIVE)
IMPLEMENTATION_STABLE = ImplementationSubstage(Substage.STABLE)
TESTING = SimpleStage(StageName.TESTING)
VALIDATION = SimpleStage(StageName.VALIDATION)
DEPLOYMENT = SimpleStage(StageName.DEPLOYMENT)

STAGE_ORDER: tuple[Stage, ...] = (
    REQUIREMENTS,
    ANALYSIS,
    DESIGN,
    IMPLEMENTATION_ACTIVE,
    IMPLEMENTATION_STABLE,
    TESTING,
    VALIDATION,
    DEPLOYMENT,
)

# Name prefix of the two sub-branches. Git refs forbid a branch with this exact name.
IMPLEMENTATION_NAMESPACE = "implementation"

_SUBSTAGE_BRANCHES = {
    Substage.ACTIVE: f"{IMPLEMENTATION_NAMESPACE}/develop",
    Substage.STABLE: f"{IMPLEMENTATION_NAMESPACE}/production",
}


def branch_name(stage: Stage) -> str:
    if isinstance(stage, ImplementationSubstage):
        return _SUBSTAGE_BRANCHES[stage.substage]
    return stage.name.value


_BY_BRANCH = {branch_name(s): s for s in STAGE_ORDER}

STAGE_BRANCHES: tuple[str, ...] = tuple(branch_name(s) for s in STAGE_ORDER)


def parse_branch(ref: str) -> Stage | None:
    """Map a branch name or refs/heads/ ref to its stage. None if not a stage branch."""
    if ref.startswith("refs/heads/"):
        ref = ref[len("refs/heads/"):]
    return _BY_BRANCH.get(ref)


def parse_stage(text: str) -> Stage:
    """Like parse_branch, but raises ValueError with the valid names."""
    stage = parse_branch(text.strip())
    if stage is None:
        raise ValueError(f"Unknown stage '{text}'. Valid: {', '.join(STAGE_BRANCHES)}")
    return stage


def stage_index(stage: Stage) -> int:
    return STAGE_ORDER.index(stage)


def successor(stage: Stage) -> Stage | None:
    """Next stage in order; None for deployment."""
    i = stage_index(stage)
    return STAGE_ORDER[i + 1] if i + 1 < len(STAGE_ORDER) else None


def predecessors(stage: Stage) -> tuple[Stage, ...]:
    return STAGE_ORDER[:stage_index(stage)]


def is_terminal(stage: Stage) -> bool:
    return successor(stage) is None


def accepts_decisions(stage: Stage) -> bool:
    return stage != IMPLEMENTATION_STABLE


def decision_stage(stage: Stage) -> Stage:
    """Where decisions targeting `stage` are recorded.

    The stable sub-stage takes no decisions of its own; they land on the
    active sub-stage, which feeds it.
    """
    return IMPLEMENTATION_ACTIVE if stage == IMPLEMENTATION_STABLE else stage
