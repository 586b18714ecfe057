"""
Configuration loaders for cofounder.

Loads idea metadata and engine settings from .env files under the cofounder
home directory:

    $COFOUNDER_HOME/
        engine.env              optional engine profile
        agents.yaml             optional agent commands
        config/current_idea     CLI context
        ideas/<id>/idea.env     idea metadata
        ideas/<id>/transitions.jsonl
        locks/
"""

import logging
import os
from dataclasses import dataclass
from pathlib import Path

from . import envparse
from . import validate
from .constants import (
    DEFAULT_AUTO_MERGE_CONFIDENCE,
    DEFAULT_MERGE_METHOD,
    DEFAULT_REVISIT_THRESHOLD,
    VALID_MERGE_METHODS,
)

logger = logging.getLogger(__name__)

HOME_ENV_VAR = "COFOUNDER_HOME"


@dataclass
class IdeaConfig:
    """Idea metadata from idea.env"""
    id: str
    name: str
    description: str
    repo: str  # owner/name
    created_at: str
    default_branch: str
    dir: Path


@dataclass
class EngineProfile:
    """Engine tuning from engine.env"""
    generate_timeout: float = 600
    review_timeout: float = 300
    auto_merge_confidence: float = DEFAULT_AUTO_MERGE_CONFIDENCE
    revisit_threshold: float = DEFAULT_REVISIT_THRESHOLD
    merge_method: str = DEFAULT_MERGE_METHOD
    ledger_cas_attempts: int = 3
    lock_timeout: int = 60
    release_branch: str = "main"
    notify: bool = True


def get_home() -> Path:
    """Resolve the cofounder home directory."""
    override = os.environ.get(HOME_ENV_VAR)
    if override:
        return Path(override).expanduser()
    return Path.home() / ".cofounder"


def idea_dir(home: Path, idea_id: str) -> Path:
    return home / "ideas" / idea_id


def load_idea_config(directory: Path) -> IdeaConfig:
    """Load idea.env and return IdeaConfig."""
    env = envparse.load_env(directory / "idea.env")

    validate.validate(env, "idea")

    return IdeaConfig(
        id=env["IDEA_ID"],
        name=env["IDEA_NAME"],
        description=env.get("IDEA_DESCRIPTION", ""),
        repo=env["REPO"],
        created_at=env["CREATED_AT"],
        default_branch=env.get("DEFAULT_BRANCH", "main"),
        dir=directory,
    )


def save_idea_config(idea: IdeaConfig) -> None:
    """Write idea.env, validating first so a bad idea never hits disk."""
    values = {
        "IDEA_ID": idea.id,
        "IDEA_NAME": envparse.sanitize_value(idea.name),
        "IDEA_DESCRIPTION": envparse.sanitize_value(idea.description),
        "REPO": idea.repo,
        "CREATED_AT": idea.created_at,
        "DEFAULT_BRANCH": idea.default_branch,
    }
    path = idea.dir / "idea.env"
    validate.validate_before_write(values, "idea", path)
    envparse.write_env(path, values)


def load_engine_profile(home: Path) -> EngineProfile:
    """Load engine.env (optional) and return EngineProfile."""
    env = envparse.load_env_optional(home / "engine.env")
    defaults = EngineProfile()

    merge_method = env.get("MERGE_METHOD", DEFAULT_MERGE_METHOD).strip().lower()
    if merge_method not in VALID_MERGE_METHODS:
        logger.warning(
            f"Unknown MERGE_METHOD '{merge_method}', using '{DEFAULT_MERGE_METHOD}'. "
            f"Valid: {sorted(VALID_MERGE_METHODS)}"
        )
        merge_method = DEFAULT_MERGE_METHOD

    return EngineProfile(
        generate_timeout=envparse.get_float(env, "GENERATE_TIMEOUT", defaults.generate_timeout),
        review_timeout=envparse.get_float(env, "REVIEW_TIMEOUT", defaults.review_timeout),
        auto_merge_confidence=envparse.get_float(
            env, "AUTO_MERGE_CONFIDENCE", defaults.auto_merge_confidence
        ),
        revisit_threshold=envparse.get_float(env, "REVISIT_THRESHOLD", defaults.revisit_threshold),
        merge_method=merge_method,
        ledger_cas_attempts=max(1, envparse.get_int(env, "LEDGER_CAS_ATTEMPTS", defaults.ledger_cas_attempts)),
        lock_timeout=envparse.get_int(env, "LOCK_TIMEOUT", defaults.lock_timeout),
        release_branch=env.get("RELEASE_BRANCH", defaults.release_branch) or defaults.release_branch,
        notify=envparse.get_bool(env, "NOTIFY", defaults.notify),
    )


def list_ideas(home: Path) -> list[IdeaConfig]:
    """List all ideas with a readable idea.env."""
    ideas_root = home / "ideas"
    if not ideas_root.exists():
        return []

    ideas = []
    for d in sorted(ideas_root.iterdir()):
        if not d.is_dir() or d.name.startswith("_"):
            continue
        try:
            ideas.append(load_idea_config(d))
        except (FileNotFoundError, ValueError, validate.ValidationError) as e:
            logger.warning(f"Skipping idea directory {d.name}: {e}")

    return ideas


def find_idea_by_repo(home: Path, repo: str) -> IdeaConfig | None:
    """Map a trigger's repository back to the idea that owns it."""
    for idea in list_ideas(home):
        if idea.repo.lower() == repo.lower():
            return idea
    return None


def get_current_idea(home: Path) -> str | None:
    """Get the current idea ID from context, or None if not set.

    Auto-clears stale context if the idea no longer exists.
    """
    context_file = home / "config" / "current_idea"
    if context_file.exists():
        idea_id = context_file.read_text().strip()
        if idea_id:
            if idea_dir(home, idea_id).exists():
                return idea_id
            context_file.unlink()
    return None


def set_current_idea(home: Path, idea_id: str) -> None:
    """Set the current idea context."""
    config_dir = home / "config"
    config_dir.mkdir(parents=True, exist_ok=True)
    (config_dir / "current_idea").write_text(idea_id + "\n")
