"""
Agent command configuration.

agents.yaml in the cofounder home names the CLI behind each of the engine's
two collaborator roles:

    stages:
      generate: claude -p --output-format json
      review: claude -p --output-format json --model opus

Roles not listed keep the defaults below.

Templates are split into argv with shell rules first and only then filled
in, one token at a time, so substituted values never need quoting:

- {prompt}  the rendered prompt. When a template has no {prompt} token the
            prompt is written to the agent's stdin instead.
- {repo}    owner/name of the idea repository
- {stage}   branch of the stage being generated or reviewed
"""

import logging
import re
import shlex
import shutil
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

import yaml

logger = logging.getLogger(__name__)

AGENTS_FILE = "agents.yaml"

DEFAULT_AGENT_COMMANDS = {
    # stage artifacts -> {"files": {...}, "decisions": [...], "summary": "..."}
    "generate": "claude -p --output-format json",
    # transition PR -> {"approved": bool, "confidence": 0..1, "notes": "..."}
    "review": "claude -p --output-format json",
}

_VARIABLE = re.compile(r'\{(\w+)\}')


@dataclass
class AgentsConfig:
    stages: dict[str, str] = field(default_factory=lambda: dict(DEFAULT_AGENT_COMMANDS))


def load_agents_config(home: Optional[Path]) -> AgentsConfig:
    """Commands from home/agents.yaml over the defaults.

    A missing or unreadable file yields the defaults; a broken one is logged.
    """
    path = home / AGENTS_FILE if home is not None else None
    if path is None or not path.exists():
        return AgentsConfig()

    try:
        data = yaml.safe_load(path.read_text()) or {}
        overrides = data.get("stages") or {}
        stages = dict(DEFAULT_AGENT_COMMANDS)
        stages.update((role, str(command)) for role, command in overrides.items())
    except (yaml.YAMLError, AttributeError) as e:
        logger.warning(f"Failed to parse {path}: {e}")
        return AgentsConfig()
    return AgentsConfig(stages=stages)


@dataclass
class AgentCommand:
    cmd: list[str]
    prompt_via_stdin: bool
    output_format: str | None  # value of --output-format, if given

    def get_stdin_input(self, prompt: str) -> str | None:
        return prompt if self.prompt_via_stdin else None


def _template(config: AgentsConfig, role: str) -> str:
    try:
        return config.stages[role]
    except KeyError:
        raise ValueError(f"Unknown agent role: {role}") from None


def _output_format(tokens: list[str]) -> str | None:
    for i, token in enumerate(tokens):
        if token.startswith("--output-format="):
            return token.partition("=")[2]
        if token == "--output-format" and i + 1 < len(tokens):
            return tokens[i + 1]
    return None


def get_agent_command(
    config: AgentsConfig,
    role: str,
    context: dict[str, str] | None = None,
) -> AgentCommand:
    """Argv for role with context values substituted.

    Raises:
        ValueError: role has no command
    """
    tokens = shlex.split(_template(config, role))
    values = {key: str(value) for key, value in (context or {}).items()}

    unresolved = sorted({
        name for token in tokens for name in _VARIABLE.findall(token) if name not in values
    })
    if unresolved:
        logger.error(f"Agent '{role}' has unsubstituted variables: {unresolved}. Template: {config.stages[role]}")

    def fill(token: str) -> str:
        return _VARIABLE.sub(lambda m: values.get(m.group(1), m.group(0)), token)

    return AgentCommand(
        cmd=[fill(token) for token in tokens],
        prompt_via_stdin=not any("{prompt}" in token for token in tokens),
        output_format=_output_format(tokens),
    )


def get_agent_binary(config: AgentsConfig, role: str) -> str:
    tokens = shlex.split(_template(config, role))
    return tokens[0] if tokens else ""


def check_agent_binaries(config: AgentsConfig, roles: list[str]) -> tuple[bool, str]:
    """(True, "") when every role's executable is on PATH, else (False, hint)."""
    for role in roles:
        binary = get_agent_binary(config, role)
        if shutil.which(binary) is None:
            return False, (
                f"Required tool '{binary}' for agent '{role}' is not installed.\n"
                f"  Install it, or point '{role}' at another command in {AGENTS_FILE}"
            )
    return True, ""
