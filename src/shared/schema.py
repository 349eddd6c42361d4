"""JSON Schema validation utilities."""

from typing import Any

from jsonschema import Draft7Validator

from shared.errors import ValidationError


def validate_schema(data: Any, schema: dict[str, Any]) -> tuple[bool, list[str]]:
    """
    Validate data against a JSON Schema.

    Args:
        data: The data to validate
        schema: JSON Schema to validate against

    Returns:
        Tuple of (is_valid, list of error messages)
    """
    if not schema:
        return True, []

    validator = Draft7Validator(schema)
    errors = sorted(validator.iter_errors(data), key=lambda e: list(e.path))

    if not errors:
        return True, []

    error_messages = [
        f"{'.'.join(str(p) for p in e.path)}: {e.message}" if e.path else e.message
        for e in errors
    ]

    return False, error_messages


def require_valid(data: Any, schema: dict[str, Any]) -> dict[str, Any]:
    """Return ``data`` with schema defaults applied, or raise ValidationError."""
    is_valid, errors = validate_schema(data, schema)
    if not is_valid:
        raise ValidationError(errors)

    validated = dict(data)
    for name, prop in schema.get("properties", {}).items():
        if name not in validated and "default" in prop:
            validated[name] = prop["default"]
    return validated
