"""
Deterministic hashing for the audit chain and change detection.

One canonical JSON form (sorted keys, compact separators, fixed
rendering of datetimes, UUIDs, enums and sets) backs every comparison
and hash, so equal data always yields equal text.
"""

import hashlib
import json
from datetime import date
from enum import Enum
from typing import Any
from uuid import UUID

GENESIS = "GENESIS"


def _canonical_value(obj: Any) -> Any:
    if isinstance(obj, date):
        return obj.isoformat()
    if isinstance(obj, (UUID, Enum)):
        return str(obj.value) if isinstance(obj, Enum) else str(obj)
    if isinstance(obj, (set, frozenset)):
        return sorted(obj, key=str)
    raise TypeError(f"Object of type {type(obj).__name__} is not JSON serializable")


def canonicalize_json(data: Any) -> str:
    return json.dumps(data, sort_keys=True, separators=(",", ":"), default=_canonical_value)


def sha256_hex(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def hash_payload(payload: dict) -> str:
    """SHA-256 of the canonical JSON form of ``payload``."""
    return sha256_hex(canonicalize_json(payload))


def hash_audit_event(
    entity_type: str,
    entity_id: str,
    action: str,
    payload_hash: str,
    prev_hash: str | None,
) -> str:
    """
    Chained hash of one audit row.

    Covers the identifying columns, the payload hash and the previous
    row's hash; the first row chains from ``GENESIS``.
    """
    return sha256_hex(
        "|".join((entity_type, str(entity_id), action, payload_hash, prev_hash or GENESIS))
    )
