"""Shared fixtures: an in-memory idea repository and deterministic collaborators."""

import itertools
import time

import pytest

from cofounder.lib.config import EngineProfile
from cofounder.ledger.artifacts import ArtifactSet
from cofounder.ledger.ledger import DecisionLedger
from cofounder.ledger.stages import STAGE_BRANCHES, branch_name
from cofounder.store.memory import InMemoryStore
from cofounder.workflow.collaborators import (
    GeneratedContent,
    PullRequestReviewer,
    ReviewVerdict,
    StageContentGenerator,
)
from cofounder.workflow.progression import StageProgression


IDEA_ID = "acme"
REPO = "acme/idea-acme"

REQUIREMENTS_TEXT = """\
# Requirements

## Essential State

Founders track every product decision in a git repository, one branch per
stage, and want the next stage drafted as soon as the current one is done.
"""

# Four assumptions, two of them critical and both critical ones validated
ASSUMPTIONS_TEXT = """\
# Assumptions

## Founders will pay for planning help (criticality: 0.9) [validated]
## Teams already keep decisions in git (criticality: 0.8) [validated]
- Markdown is acceptable for every artifact (criticality: 0.5)
- GitHub is the primary forge (criticality: 0.3)
"""

COMPLETE_FILES = {
    "requirements": {
        "REQUIREMENTS.md": REQUIREMENTS_TEXT,
        "ASSUMPTIONS.md": ASSUMPTIONS_TEXT,
        "GOALS.md": "# Goals\n\n- 10 paying founders in 90 days\n",
    },
    "analysis": {
        "ANALYSIS.md": (
            "# Analysis\n\n## Biggest Unknowns\n\n"
            "### Willingness to pay\n### Retention\n### Channel\n### Pricing\n### Regulation\n"
        ),
        "RISK_ASSESSMENT.md": (
            "# Risks\n\n### Market\n### Technical\n### Team\n### Funding\n### Legal\n"
        ),
        "COMPETITIVE_ANALYSIS.md": "# Competitors\n\n### Notion\n### Linear\n### Jira\n",
        "MVP_DEFINITION.md": "# MVP\n\nA CLI that advances stages.\n",
    },
    "design": {
        "UX_DESIGN.md": "# UX\n\n## Journeys\n\n### Onboarding\n",
        "TECHNICAL_ARCHITECTURE.md": (
            "# Architecture\n\n## Components\n\n### Ledger\n### Engine\n### Store\n"
        ),
        "API_SPEC.md": "# API\n\n- `GET /ideas`\n- `POST /ideas/{id}/triggers`\n",
        "DATABASE_SCHEMA.md": "# Schema\n\nNo database; git is the store.\n",
    },
    "implementation/develop": {
        "src/app.py": "print('hello')\n",
        "tests/test_app.py": "def test_app():\n    assert True\n",
    },
    "implementation/production": {
        "src/app.py": "print('hello')\n",
        "tests/test_app.py": "def test_app():\n    assert True\n",
        "CHANGELOG.md": "# Changelog\n\n## 0.1.0\n\n- First release\n",
    },
    "testing": {
        "TEST_REPORT.md": "# Test Report\n\n## Suites\n\n### Unit\n### Integration\n### End to end\n",
        "BUG_LOG.md": "# Bugs\n\nNone open.\n",
    },
    "validation": {
        "VALIDATION_PLAN.md": "# Plan\n\nInterview five founders.\n",
        "USER_FEEDBACK.md": "# Feedback\n\n### Founder A\n### Founder B\n### Founder C\n",
        "METRICS_REPORT.md": "# Metrics\n\nActivation 60%.\n",
        "LAUNCH_CHECKLIST.md": "# Launch\n\n- [x] Docs\n- [x] Pricing page\n",
    },
    "deployment": {
        "DEPLOYMENT.md": "# Deployment\n\n## Production\n\nFly.io, one region.\n",
    },
}


def make_artifacts(branch: str, files: dict) -> ArtifactSet:
    """ArtifactSet built directly from a file dict, no store involved."""
    documents = {p: t for p, t in files.items() if "/" not in p and p.endswith((".md", ".log", ".txt"))}
    return ArtifactSet(stage_branch=branch, commit="0" * 40, paths=tuple(sorted(files)), documents=documents)


def seed(store: InMemoryStore, branch: str, files: dict) -> None:
    for path, content in files.items():
        store.put_file(branch, path, content, f"seed {path}")


class FakeGenerator(StageContentGenerator):
    """Returns the complete file set for the next stage unless told otherwise."""

    def __init__(self):
        self.files = None
        self.decisions = []
        self.summary = "Drafted the next stage."
        self.delay = 0.0
        self.error = None
        self.calls = []

    def generate(self, stage, next_stage, artifacts, decisions=()):
        self.calls.append((branch_name(stage), branch_name(next_stage), artifacts.commit, list(decisions)))
        if self.delay:
            time.sleep(self.delay)
        if self.error:
            raise self.error
        files = self.files if self.files is not None else COMPLETE_FILES[branch_name(next_stage)]
        return GeneratedContent(files=dict(files), decisions=list(self.decisions), summary=self.summary)


class FakeReviewer(PullRequestReviewer):

    def __init__(self):
        self.approved = True
        self.confidence = 0.9
        self.notes = ""
        self.delay = 0.0
        self.error = None
        self.reviewed = []

    def review(self, pr):
        self.reviewed.append(pr.number)
        if self.delay:
            time.sleep(self.delay)
        if self.error:
            raise self.error
        return ReviewVerdict(approved=self.approved, confidence=self.confidence, notes=self.notes)


@pytest.fixture
def store():
    """Idea repository with every stage branch created from an empty main."""
    s = InMemoryStore(repo=REPO)
    root = s.get_branch_head("main").sha
    for branch in STAGE_BRANCHES:
        s.create_branch(branch, root)
    return s


@pytest.fixture
def clock():
    counter = itertools.count(1)
    return lambda: f"2026-01-05T10:{next(counter):02d}:00+00:00"


@pytest.fixture
def ledger(store, clock):
    return DecisionLedger(store, IDEA_ID, clock=clock)


@pytest.fixture
def generator():
    return FakeGenerator()


@pytest.fixture
def reviewer():
    return FakeReviewer()


@pytest.fixture
def profile():
    return EngineProfile(generate_timeout=5, review_timeout=5, notify=False)


@pytest.fixture
def engine(store, ledger, generator, reviewer, profile):
    return StageProgression(store, ledger, generator, reviewer, profile=profile)
