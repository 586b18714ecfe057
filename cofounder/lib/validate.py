"""
JSON Schema checks for the data cofounder accepts from outside.

Three boundaries are checked: idea.env contents, generator replies and
reviewer replies. Schemas live in cofounder/schemas/<name>.schema.json and
are compiled once per process. A failure reports the most relevant error
and its location, so an agent reply that is wrong in several places still
produces one readable line.
"""

import json
from functools import lru_cache
from pathlib import Path

import jsonschema
from jsonschema.exceptions import best_match

SCHEMAS_DIR = Path(__file__).resolve().parent.parent / "schemas"


class ValidationError(Exception):
    """Data did not match its schema."""

    def __init__(self, schema_name: str, message: str, path: str = None):
        self.schema_name = schema_name
        self.path = path
        location = f" at {path}" if path else ""
        super().__init__(f"[{schema_name}] {message}{location}")


@lru_cache(maxsize=None)
def _validator(schema_name: str):
    schema_path = SCHEMAS_DIR / f"{schema_name}.schema.json"
    try:
        schema = json.loads(schema_path.read_text())
    except FileNotFoundError:
        raise ValidationError(schema_name, f"No schema file {schema_path.name}") from None
    validator_cls = jsonschema.validators.validator_for(schema)
    validator_cls.check_schema(schema)
    return validator_cls(schema)


def validate(data: dict, schema_name: str) -> None:
    """Check data against a named schema ("idea", "generated_content", "review").

    Raises:
        ValidationError: naming the best-matching failure and its JSON path
    """
    error = best_match(_validator(schema_name).iter_errors(data))
    if error is None:
        return
    path = "/".join(str(p) for p in error.absolute_path) or "(root)"
    raise ValidationError(schema_name, error.message, path)


def validate_before_write(data: dict, schema_name: str, filepath: Path) -> None:
    """Like validate(), but phrased for a file about to be written."""
    try:
        validate(data, schema_name)
    except ValidationError as e:
        raise ValidationError(schema_name, f"Refusing to write {filepath.name}: {e}") from None
