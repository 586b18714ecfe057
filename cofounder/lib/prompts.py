"""
Prompt templates for the agent collaborators.

Templates are markdown files in cofounder/prompts/ rendered with
str.format(): {variable} is substituted, {{ and }} produce literal braces
(needed for the JSON reply examples). A leading HTML comment documents a
template's variables and is stripped before the prompt is sent.
"""

import logging
import re
import string
from functools import lru_cache
from pathlib import Path

logger = logging.getLogger(__name__)

__all__ = ["PromptError", "load_prompt", "render_prompt", "build_section", "clear_cache", "PROMPTS_DIR"]

PROMPTS_DIR = Path(__file__).resolve().parent.parent / "prompts"

_COMMENT = re.compile(r'<!--.*?-->\s*', re.DOTALL)


class PromptError(Exception):
    """Template missing or variables do not fit it."""


@lru_cache(maxsize=32)
def load_prompt(name: str) -> str:
    """Template text for name, comments removed. Cached per process.

    Raises:
        PromptError: no cofounder/prompts/<name>.md
    """
    path = PROMPTS_DIR / f"{name}.md"
    try:
        raw = path.read_text()
    except FileNotFoundError:
        raise PromptError(f"Prompt template '{name}' not found (looked for {path})") from None
    logger.debug(f"[PROMPT] loaded {name}")
    return _COMMENT.sub('', raw).lstrip()


def _fields(template: str) -> set[str]:
    return {field for _, field, _, _ in string.Formatter().parse(template) if field}


def render_prompt(name: str, **kwargs) -> str:
    """Render template name with kwargs.

    Every placeholder must be supplied; extra kwargs are ignored.

    Raises:
        PromptError: template missing or a placeholder has no value
    """
    template = load_prompt(name)
    missing = sorted(_fields(template) - kwargs.keys())
    if missing:
        raise PromptError(
            f"Missing required variable(s) {', '.join(missing)} in prompt '{name}'. "
            f"Provided: {sorted(kwargs)}"
        )
    return template.format(**kwargs)


def build_section(content: str | None, header: str, empty_msg: str | None = None) -> str:
    """'header\\n\\ncontent\\n'; falls back to empty_msg, or '' when both are empty."""
    body = content or empty_msg
    if body is None:
        return ""
    return f"{header}\n\n{body}\n"


def clear_cache() -> None:
    load_prompt.cache_clear()
