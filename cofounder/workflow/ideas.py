"""
Idea bootstrap.

Creates the idea repository, one branch per stage, and seeds the
requirements branch with the documents a founder fills in first.
"""

import logging
import re
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable

from cofounder.lib import config
from cofounder.lib.constants import (
    DECISION_LOG_HEADER,
    DECISION_LOG_PATH,
    IDEA_ID_PATTERN,
    MAX_IDEA_ID_LEN,
    REPO_PREFIX,
)
from cofounder.ledger.stages import REQUIREMENTS, STAGE_BRANCHES, branch_name
from cofounder.store.base import VersionedStore
from cofounder.store.github import GitHubStore

logger = logging.getLogger(__name__)


README_TEMPLATE = """\
# {name}

{description}

This repository tracks a possible future being explored with cofounder.

## Structure

- Each branch = waterfall stage
- Each commit to DECISIONS.log = decision made
- PRs = stage transitions

## Branches

- `requirements` - Initial requirements
- `analysis` - Analysis and planning
- `design` - System design
- `implementation/develop` - Active development
- `implementation/production` - Stable code
- `testing` - Test results
- `validation` - Goal validation
- `deployment` - Deployment configs

## Decision History

See DECISIONS.log in each branch for all decisions made.
"""

REQUIREMENTS_TEMPLATE = """\
# Requirements

## Essential State

What we know about this system.

## System Components

Components that need to be built.

## User Stories

What users need to do.

## Non-Functional Requirements

Performance, security, scalability requirements.
"""

ASSUMPTIONS_TEMPLATE = """\
# Assumptions

Write one assumption per `##` heading or bullet, tagged with its
criticality between 0 and 1 (an untagged heading counts as 0.5), and mark
it `[validated]` once evidence is in.

**Critical assumptions** (criticality above 0.7) must be validated before
advancing past requirements.

**Standard assumptions** should be validated but are not blocking.
"""

GOALS_TEMPLATE = """\
# Goals

## Measurable Outcomes

What success looks like (quantifiable).

## Success Metrics

How we'll measure goal achievement.

## Current Status

Track progress toward each goal.
"""


def slugify(name: str) -> str:
    """Idea name -> idea ID (also the repository suffix).

    Raises:
        ValueError: name has no usable characters
    """
    slug = re.sub(r'[^a-z0-9]+', '-', name.lower()).strip('-')
    slug = slug[:MAX_IDEA_ID_LEN].rstrip('-')
    if not slug or not IDEA_ID_PATTERN.match(slug):
        raise ValueError(f"Cannot derive an idea ID from {name!r}")
    return slug


def seed_files(name: str, description: str) -> dict[str, str]:
    return {
        "README.md": README_TEMPLATE.format(name=name, description=description or ""),
        "REQUIREMENTS.md": REQUIREMENTS_TEMPLATE,
        "ASSUMPTIONS.md": ASSUMPTIONS_TEMPLATE,
        "GOALS.md": GOALS_TEMPLATE,
        DECISION_LOG_PATH: DECISION_LOG_HEADER,
    }


def initialize_repository(store: VersionedStore, name: str, description: str = "") -> list[str]:
    """Create stage branches from the default branch and seed requirements.

    Safe to re-run: existing branches and unchanged files are left alone.
    Returns the branches created.
    """
    root = store.get_branch_head(store.default_branch)
    created = [b for b in STAGE_BRANCHES if store.ensure_branch(b, root.sha)]
    for branch in created:
        logger.info(f"[IDEA] {store.repo}: created branch {branch}")

    requirements = branch_name(REQUIREMENTS)
    for path, content in seed_files(name, description).items():
        store.put_file(requirements, path, content, f"init: create {path}")

    return created


def create_idea(
    home: Path,
    name: str,
    description: str,
    owner: str,
    create_store: Callable[[str, str], VersionedStore] = GitHubStore.create_repository,
) -> tuple[config.IdeaConfig, VersionedStore]:
    """Create repository, branches, templates and idea.env for a new idea.

    Raises:
        ValueError: name unusable or idea already exists
        StoreError: repository creation or initialization failed
    """
    idea_id = slugify(name)
    directory = config.idea_dir(home, idea_id)
    if (directory / "idea.env").exists():
        raise ValueError(f"Idea '{idea_id}' already exists at {directory}")

    repo = f"{owner}/{REPO_PREFIX}{idea_id}"
    store = create_store(repo, description)
    initialize_repository(store, name, description)

    idea = config.IdeaConfig(
        id=idea_id,
        name=name,
        description=description,
        repo=repo,
        created_at=datetime.now(timezone.utc).isoformat(timespec="seconds"),
        default_branch=store.default_branch,
        dir=directory,
    )
    config.save_idea_config(idea)
    logger.info(f"[IDEA] Created idea {idea_id} ({repo})")
    return idea, store
