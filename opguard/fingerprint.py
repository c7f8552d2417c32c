"""Request fingerprinting for idempotent operations."""

import hashlib
import json
from datetime import date, datetime
from decimal import Decimal
from uuid import UUID

from .exceptions import SerializationError


def fingerprint(payload: object) -> str:
    """Compute a stable fingerprint for an operation payload.

    Args:
        payload: The operation's structured input

    Returns:
        SHA-256 hex digest of the canonical JSON form

    Two payloads that differ only in dict key order produce the same
    fingerprint.
    """
    canonical = json.dumps(
        canonicalize(payload), sort_keys=True, separators=(",", ":")
    )
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def canonicalize(value: object) -> object:
    """Convert a value to a JSON-compatible structure with stable ordering.

    Args:
        value: Value to convert

    Returns:
        Equivalent structure built from dicts, lists and JSON scalars

    Raises:
        SerializationError: If the value has no stable JSON form
    """
    # bool is an int subclass, so it is covered here too
    if isinstance(value, (str, int, type(None))):
        return value

    if isinstance(value, float):
        if value != value or value in (float("inf"), float("-inf")):
            raise SerializationError(value, "non-finite float")
        return value

    if isinstance(value, dict):
        result: dict[str, object] = {}
        for k in sorted(value, key=_dict_key):
            result[_dict_key(k)] = canonicalize(value[k])
        return result

    if isinstance(value, (list, tuple)):
        return [canonicalize(v) for v in value]

    # Sets have no order; sort by canonical JSON text
    if isinstance(value, (set, frozenset)):
        items = [canonicalize(v) for v in value]
        return sorted(items, key=lambda v: json.dumps(v, sort_keys=True))

    if isinstance(value, (Decimal, UUID)):
        return str(value)

    if isinstance(value, (datetime, date)):
        return value.isoformat()

    raise SerializationError(value, f"unsupported type {type(value).__name__}")


def _dict_key(key: object) -> str:
    if not isinstance(key, str):
        raise SerializationError(key, f"dict key {key!r} is not a string")
    return key
