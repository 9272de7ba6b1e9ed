# src/pyenrich/validation.py

import json
import logging
from pathlib import Path
from typing import Any, Dict, Optional, Union

from .exceptions import ValidationError

logger = logging.getLogger(__name__)

JSON_TYPES = {
    "object": lambda v: isinstance(v, dict),
    "array": lambda v: isinstance(v, list),
    "string": lambda v: isinstance(v, str),
    "integer": lambda v: isinstance(v, int) and not isinstance(v, bool),
    "number": lambda v: isinstance(v, (int, float)) and not isinstance(v, bool),
    "boolean": lambda v: isinstance(v, bool),
    "null": lambda v: v is None,
}


def _type_name(value: Any) -> str:
    for name, check in JSON_TYPES.items():
        # "integer" before "number" so ints report as integer
        if name != "number" and check(value):
            return name
    return "number" if JSON_TYPES["number"](value) else type(value).__name__


def _json_equal(a: Any, b: Any) -> bool:
    """Equality that keeps JSON types apart: `true` is not `1`, `1.0` is not `1`."""
    if _type_name(a) != _type_name(b):
        return False
    if isinstance(a, list):
        return len(a) == len(b) and all(_json_equal(x, y) for x, y in zip(a, b))
    if isinstance(a, dict):
        return a.keys() == b.keys() and all(_json_equal(a[k], b[k]) for k in a)
    return a == b


def find_violation(value: Any, schema: Dict[str, Any], path: str = "$") -> Optional[str]:
    """
    Returns a description of the first place `value` breaks `schema`, or None.

    Only the structural keywords are checked: `type`, `enum`, `required`,
    `properties` and `items`. Everything else in the schema is ignored.
    """
    expected = schema.get("type")
    if expected is not None:
        allowed = expected if isinstance(expected, list) else [expected]
        known = [t for t in allowed if t in JSON_TYPES]
        if known and not any(JSON_TYPES[t](value) for t in known):
            return f"{path}: expected {' or '.join(known)}, got {_type_name(value)}"

    enum = schema.get("enum")
    if isinstance(enum, list) and not any(_json_equal(value, option) for option in enum):
        return f"{path}: {value!r} is not one of {enum!r}"

    if isinstance(value, dict):
        for key in schema.get("required", []):
            if key not in value:
                return f"{path}: missing required property '{key}'"
        for key, sub_schema in schema.get("properties", {}).items():
            if key in value and isinstance(sub_schema, dict):
                violation = find_violation(value[key], sub_schema, f"{path}.{key}")
                if violation:
                    return violation

    if isinstance(value, list) and isinstance(schema.get("items"), dict):
        for i, item in enumerate(value):
            violation = find_violation(item, schema["items"], f"{path}[{i}]")
            if violation:
                return violation

    return None


def validate_response(
    content: Any,
    schema: Optional[Dict[str, Any]],
    image: Union[str, Path] = "<unknown>",
) -> Any:
    """
    Turns the model's reply into the value to be written.

    Text replies are parsed as JSON. Without a schema, text that is not
    JSON is kept as a JSON string. With a schema the reply must be JSON
    and satisfy it; otherwise ValidationError names the first violation.
    """
    if isinstance(content, str):
        try:
            value = json.loads(content)
        except json.JSONDecodeError as e:
            if schema is not None:
                raise ValidationError(image, f"Response is not valid JSON: {e}") from e
            logger.debug(f"Response for {image} is not JSON, storing raw text.")
            return content
    else:
        value = content

    if schema is not None:
        violation = find_violation(value, schema)
        if violation:
            raise ValidationError(image, violation)

    return value
