"""Decision ledger, stage model and completeness rules.

Usage:
    from cofounder.ledger import DecisionLedger, evaluate, ArtifactSet, ANALYSIS

    verdict = evaluate(ANALYSIS, ArtifactSet.load(store, "analysis"))
"""

from cofounder.ledger.artifacts import ArtifactSet, Assumption, parse_assumptions
from cofounder.ledger.completeness import CompletenessVerdict, evaluate, evaluator
from cofounder.ledger.decisions import (
    Decision,
    DecisionType,
    ProposedDecision,
    normalize_name,
)
from cofounder.ledger.ledger import DecisionLedger, RecordOutcome
from cofounder.ledger.stages import (
    ANALYSIS,
    DEPLOYMENT,
    DESIGN,
    IMPLEMENTATION_ACTIVE,
    IMPLEMENTATION_STABLE,
    REQUIREMENTS,
    STAGE_ORDER,
    TESTING,
    VALIDATION,
    ImplementationSubstage,
    SimpleStage,
    Stage,
    branch_name,
    parse_branch,
    successor,
)

__all__ = [
    "ArtifactSet",
    "Assumption",
    "parse_assumptions",
    "CompletenessVerdict",
    "evaluate",
    "evaluator",
    "Decision",
    "DecisionType",
    "ProposedDecision",
    "normalize_name",
    "DecisionLedger",
    "RecordOutcome",
    "ANALYSIS",
    "DEPLOYMENT",
    "DESIGN",
    "IMPLEMENTATION_ACTIVE",
    "IMPLEMENTATION_STABLE",
    "REQUIREMENTS",
    "STAGE_ORDER",
    "TESTING",
    "VALIDATION",
    "ImplementationSubstage",
    "SimpleStage",
    "Stage",
    "branch_name",
    "parse_branch",
    "successor",
]
