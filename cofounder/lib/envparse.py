"""
Safe .env file parser.

Parses KEY=value files (idea.env, engine.env) without shell execution.
Values that look like shell syntax are rejected rather than interpreted,
and typed accessors keep config loaders free of float()/int() boilerplate.
"""

import logging
import re
from pathlib import Path

logger = logging.getLogger(__name__)

# backticks, $( ), ${ }, ;, &&, ||, |
FORBIDDEN = re.compile(r'`|\$\(|\$\{|;|&&|\|')

KEY_PATTERN = re.compile(r'^[A-Z][A-Z0-9_]*$')

TRUE_VALUES = {"1", "true", "yes", "on"}


def _unquote(value: str) -> str:
    if len(value) >= 2 and value[0] == value[-1] and value[0] in "\"'":
        return value[1:-1]
    return value


def _check(key: str, value: str, where: str) -> None:
    if not KEY_PATTERN.match(key):
        raise ValueError(f"{where}Invalid key '{key}'")
    if FORBIDDEN.search(value):
        raise ValueError(f"{where}Forbidden pattern in value of {key}")


def parse_env(text: str, source: str = "<string>") -> dict[str, str]:
    """
    Parse env-file text into a dict. Blank lines and # comments are skipped.

    Raises:
        ValueError: if syntax invalid or forbidden pattern found
    """
    result = {}
    for lineno, raw in enumerate(text.splitlines(), 1):
        line = raw.strip()
        if not line or line.startswith('#'):
            continue
        where = f"{source} line {lineno}: "
        key, sep, value = line.partition('=')
        if not sep:
            raise ValueError(f"{where}Invalid syntax (no '=')")
        key, value = key.strip(), _unquote(value.strip())
        _check(key, value, where)
        result[key] = value
    return result


def load_env(filepath: str | Path) -> dict[str, str]:
    """
    Parse env file safely, return dict.

    Raises:
        FileNotFoundError: if file doesn't exist
        ValueError: if syntax invalid or forbidden pattern found
    """
    path = Path(filepath)
    if not path.exists():
        raise FileNotFoundError(f"Env file not found: {filepath}")
    return parse_env(path.read_text(), source=path.name)


def load_env_optional(filepath: str | Path) -> dict[str, str]:
    """Like load_env, but a missing file yields an empty dict."""
    try:
        return load_env(filepath)
    except FileNotFoundError:
        return {}


def write_env(filepath: Path, values: dict[str, str]) -> None:
    """Write values as KEY="value" lines, refusing anything load_env would reject."""
    lines = []
    for key, value in values.items():
        value = str(value).replace("\n", " ")
        _check(key, value, "")
        lines.append(f'{key}="{value}"')
    filepath.parent.mkdir(parents=True, exist_ok=True)
    filepath.write_text("\n".join(lines) + "\n")


def sanitize_value(value: str) -> str:
    """Strip characters write_env would refuse (for free text like descriptions)."""
    value = re.sub(r'[`;|&$]', '', value.replace("\n", " "))
    return re.sub(r'\s+', ' ', value).strip().replace('"', "'")


def get_float(env: dict, key: str, default: float) -> float:
    """Read a float, falling back to default (with a warning) on junk."""
    raw = env.get(key)
    if raw is None or raw == "":
        return default
    try:
        return float(raw)
    except ValueError:
        logger.warning(f"Invalid {key}={raw!r}, using {default}")
        return default


def get_int(env: dict, key: str, default: int) -> int:
    raw = env.get(key)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning(f"Invalid {key}={raw!r}, using {default}")
        return default


def get_bool(env: dict, key: str, default: bool) -> bool:
    raw = env.get(key)
    if raw is None or raw == "":
        return default
    return raw.strip().lower() in TRUE_VALUES
