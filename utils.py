from typing import Any, Dict
import math
import json

def quote(text: str) -> str:
    """ Double-quoted, escaped rendering of a string for diagnostics: 'boo' -> '"boo"'.
        Non-ASCII characters (e.g. the Unicode minus) are kept as they are.
    """
    return json.dumps(text, ensure_ascii=False)

def is_scalar_empty(value):
    if value in [None, "", "-"]:
        return True
    if isinstance(value, float):
        return math.isnan(value)
    return False

def flatten_timestamp_record(record, include_raw: bool = True) -> Dict[str, Any]:
    """
    Flatten a TimestampRecord into a flat dictionary.

    Output format (for each field with name N):
      N: <raw value>                 (only if include_raw)
      N canonical: <canonical>
      N error: <error>

    Later duplicates overwrite earlier ones (last one wins).
    """
    flat: Dict[str, Any] = {}
    if not record:
        return flat

    if record.record_id is not None:
        flat["record id"] = record.record_id

    for field in record.fields or []:
        if not field or field.name is None:
            continue
        base_name = field.name.strip()
        if not base_name:
            continue

        if include_raw:
            flat[base_name] = field.raw
        flat[f"{base_name} canonical"] = field.canonical
        flat[f"{base_name} error"] = field.error

    return flat


# Serialization of cell values which are not already strings
def convert_value_to_string(value):
    if isinstance(value, str):
        return value
    # If it's None, return as-is
    if value is None:
        return None
    try:
        # Try JSON serialization (works for lists, dicts, numbers, booleans, etc.)
        return json.dumps(value, ensure_ascii=False)
    except (TypeError, ValueError):
        # Fallback for unserializable objects
        return str(value)
