"""
Completeness evaluator.

One predicate per stage over that stage's ArtifactSet. Predicates are pure:
the same snapshot always yields the same verdict. A missing artifact makes a
stage incomplete; a malformed one makes it incomplete with the parse failure
as the reason. Neither is an error.

New stages get rules by registering a predicate:

    @evaluator(TESTING)
    def _testing(artifacts: ArtifactSet) -> CompletenessVerdict:
        ...
"""

import logging
from dataclasses import dataclass, field
from typing import Callable

from cofounder.lib.errors import MalformedArtifact
from .artifacts import (
    ArtifactSet,
    checklist,
    endpoints,
    headings,
    parse_assumptions,
    section_entries,
)
from .stages import (
    ANALYSIS,
    DEPLOYMENT,
    DESIGN,
    IMPLEMENTATION_ACTIVE,
    IMPLEMENTATION_STABLE,
    REQUIREMENTS,
    TESTING,
    VALIDATION,
    Stage,
)

logger = logging.getLogger(__name__)

MIN_REQUIREMENTS_LENGTH = 100
CRITICAL_THRESHOLD = 0.7
MIN_VALIDATED_CRITICAL_RATE = 0.8
MIN_UNKNOWNS = 5
MIN_RISKS = 5
MIN_COMPETITORS = 3
MIN_JOURNEYS = 1
MIN_COMPONENTS = 3
MIN_ENDPOINTS = 1
MIN_TEST_SUITES = 3
MIN_FEEDBACK_ENTRIES = 3
MIN_ENVIRONMENTS = 1


@dataclass(frozen=True)
class CompletenessVerdict:
    complete: bool
    reason: str
    metrics: dict = field(default_factory=dict)


Predicate = Callable[[ArtifactSet], CompletenessVerdict]

EVALUATORS: dict[Stage, Predicate] = {}


def evaluator(*stages: Stage):
    """Register a predicate for one or more stages."""
    def decorator(func: Predicate) -> Predicate:
        for stage in stages:
            EVALUATORS[stage] = func
        return func
    return decorator


def evaluate(stage: Stage, artifacts: ArtifactSet) -> CompletenessVerdict:
    predicate = EVALUATORS.get(stage)
    if predicate is None:
        return CompletenessVerdict(False, f"No completeness rules registered for {stage}")
    try:
        verdict = predicate(artifacts)
    except MalformedArtifact as e:
        verdict = CompletenessVerdict(False, f"Malformed {e.path}: {e.detail}", {"malformed": e.path})
    logger.debug(f"[EVAL] {stage}: complete={verdict.complete} {verdict.metrics}")
    return verdict


class _Checks:
    """Accumulates failed criteria and metrics for one verdict."""

    def __init__(self, stage: Stage):
        self.stage = stage
        self.failures: list[str] = []
        self.metrics: dict = {}

    def require(self, ok: bool, failure: str) -> bool:
        if not ok:
            self.failures.append(failure)
        return ok

    def document(self, artifacts: ArtifactSet, path: str, non_empty: bool = False) -> str | None:
        """Require path to exist; return its text (None if missing)."""
        text = artifacts.get(path)
        if text is None and not artifacts.has(path):
            self.failures.append(f"{path} is missing")
            return None
        text = text or ""
        if non_empty and not text.strip():
            self.failures.append(f"{path} is empty")
            return None
        return text

    def count(self, key: str, items: list, minimum: int, label: str, path: str):
        self.metrics[key] = len(items)
        self.require(len(items) >= minimum, f"{path} lists {len(items)} {label} (need ≥{minimum})")

    def verdict(self) -> CompletenessVerdict:
        if self.failures:
            return CompletenessVerdict(False, "; ".join(self.failures), self.metrics)
        return CompletenessVerdict(True, f"{self.stage} is complete", self.metrics)


@evaluator(REQUIREMENTS)
def _requirements(artifacts: ArtifactSet) -> CompletenessVerdict:
    checks = _Checks(REQUIREMENTS)

    requirements = checks.document(artifacts, "REQUIREMENTS.md")
    if requirements is not None:
        length = len(requirements.strip())
        checks.metrics["requirements_length"] = length
        checks.require(
            length > MIN_REQUIREMENTS_LENGTH,
            f"REQUIREMENTS.md is too short ({length} chars, need >{MIN_REQUIREMENTS_LENGTH})",
        )

    text = checks.document(artifacts, "ASSUMPTIONS.md")
    if text is not None:
        assumptions = parse_assumptions(text)
        critical = [a for a in assumptions if a.criticality > CRITICAL_THRESHOLD]
        validated = [a for a in critical if a.validated]
        rate = len(validated) / len(critical) if critical else 1.0
        checks.metrics.update({
            "assumptions": len(assumptions),
            "critical_assumptions": len(critical),
            "validated_critical": len(validated),
            "validated_critical_rate": rate,
        })
        checks.require(assumptions != [], "ASSUMPTIONS.md has no assumptions (need ≥1)")
        checks.require(
            rate >= MIN_VALIDATED_CRITICAL_RATE,
            f"only {len(validated)}/{len(critical)} critical assumptions validated "
            f"(need ≥{MIN_VALIDATED_CRITICAL_RATE:.0%})",
        )

    checks.document(artifacts, "GOALS.md", non_empty=True)
    return checks.verdict()


@evaluator(ANALYSIS)
def _analysis(artifacts: ArtifactSet) -> CompletenessVerdict:
    checks = _Checks(ANALYSIS)

    text = checks.document(artifacts, "ANALYSIS.md")
    if text is not None:
        checks.count("unknowns", section_entries(text, "Biggest Unknowns"), MIN_UNKNOWNS, "unknowns", "ANALYSIS.md")

    text = checks.document(artifacts, "RISK_ASSESSMENT.md")
    if text is not None:
        checks.count("risks", section_entries(text, None), MIN_RISKS, "risks", "RISK_ASSESSMENT.md")

    text = checks.document(artifacts, "COMPETITIVE_ANALYSIS.md")
    if text is not None:
        checks.count(
            "competitors", section_entries(text, None), MIN_COMPETITORS,
            "competitors", "COMPETITIVE_ANALYSIS.md",
        )

    checks.document(artifacts, "MVP_DEFINITION.md")
    return checks.verdict()


@evaluator(DESIGN)
def _design(artifacts: ArtifactSet) -> CompletenessVerdict:
    checks = _Checks(DESIGN)

    text = checks.document(artifacts, "UX_DESIGN.md")
    if text is not None:
        checks.count("journeys", section_entries(text, "Journeys"), MIN_JOURNEYS, "user journeys", "UX_DESIGN.md")

    text = checks.document(artifacts, "TECHNICAL_ARCHITECTURE.md")
    if text is not None:
        checks.count(
            "components", section_entries(text, "Components"), MIN_COMPONENTS,
            "components", "TECHNICAL_ARCHITECTURE.md",
        )

    text = checks.document(artifacts, "API_SPEC.md")
    if text is not None:
        checks.count("endpoints", endpoints(text), MIN_ENDPOINTS, "endpoints", "API_SPEC.md")

    checks.document(artifacts, "DATABASE_SCHEMA.md")
    return checks.verdict()


def _check_code(checks: _Checks, artifacts: ArtifactSet):
    for root in ("", "implementation/"):
        src = artifacts.files_under(f"{root}src")
        tests = artifacts.files_under(f"{root}tests")
        if src and tests:
            checks.metrics.update({"source_files": len(src), "test_files": len(tests)})
            return
    checks.metrics.update({
        "source_files": len(artifacts.files_under("src")),
        "test_files": len(artifacts.files_under("tests")),
    })
    checks.require(False, "src/ and tests/ must both exist and be non-empty")


@evaluator(IMPLEMENTATION_ACTIVE)
def _implementation_active(artifacts: ArtifactSet) -> CompletenessVerdict:
    checks = _Checks(IMPLEMENTATION_ACTIVE)
    _check_code(checks, artifacts)
    return checks.verdict()


@evaluator(IMPLEMENTATION_STABLE)
def _implementation_stable(artifacts: ArtifactSet) -> CompletenessVerdict:
    checks = _Checks(IMPLEMENTATION_STABLE)
    _check_code(checks, artifacts)
    checks.document(artifacts, "CHANGELOG.md")
    return checks.verdict()


@evaluator(TESTING)
def _testing(artifacts: ArtifactSet) -> CompletenessVerdict:
    checks = _Checks(TESTING)

    text = checks.document(artifacts, "TEST_REPORT.md")
    if text is not None:
        checks.count("suites", section_entries(text, "Suites"), MIN_TEST_SUITES, "test suites", "TEST_REPORT.md")

    checks.document(artifacts, "BUG_LOG.md")
    return checks.verdict()


@evaluator(VALIDATION)
def _validation(artifacts: ArtifactSet) -> CompletenessVerdict:
    checks = _Checks(VALIDATION)

    checks.document(artifacts, "VALIDATION_PLAN.md")

    text = checks.document(artifacts, "USER_FEEDBACK.md")
    if text is not None:
        checks.count(
            "feedback_entries", section_entries(text, None), MIN_FEEDBACK_ENTRIES,
            "feedback entries", "USER_FEEDBACK.md",
        )

    checks.document(artifacts, "METRICS_REPORT.md")

    text = checks.document(artifacts, "LAUNCH_CHECKLIST.md")
    if text is not None:
        items = checklist(text)
        checked = sum(items)
        checks.metrics.update({"checklist_items": len(items), "checklist_checked": checked})
        checks.require(items != [], "LAUNCH_CHECKLIST.md has no checklist items (need ≥1)")
        checks.require(
            checked == len(items),
            f"LAUNCH_CHECKLIST.md has {len(items) - checked} unchecked items",
        )

    return checks.verdict()


@evaluator(DEPLOYMENT)
def _deployment(artifacts: ArtifactSet) -> CompletenessVerdict:
    checks = _Checks(DEPLOYMENT)

    text = checks.document(artifacts, "DEPLOYMENT.md")
    if text is not None:
        checks.count(
            "environments", headings(text, 2), MIN_ENVIRONMENTS,
            "environment sections", "DEPLOYMENT.md",
        )

    return checks.verdict()
