import hashlib
import json
from datetime import datetime, date
from decimal import Decimal
from enum import Enum
from typing import Any


class CanonicalEncoder(json.JSONEncoder):
    """
    JSON Encoder that prioritizes Fidelity over Flexibility.

    RULES:
    1. Dates MUST be ISO 8601 strings (UTC).
    2. Enums MUST use their .value.
    3. Decimals are emitted as floats.
    4. Sets -> Lists (sorted for determinism).
    5. The ABSENT sentinel is a tagged object, never confused with null.
    """

    def default(self, obj: Any) -> Any:
        from ..contracts.snapshots import ABSENT
        from ..contracts.base import OpenTag, Timestamp

        if obj is ABSENT:
            return {"$absent": True}
        if isinstance(obj, (datetime, date)):
            return obj.isoformat()
        if isinstance(obj, Timestamp):
            return obj.to_iso()
        if isinstance(obj, OpenTag):
            return obj.value
        if isinstance(obj, Enum):
            return obj.value
        if isinstance(obj, Decimal):
            return float(obj)
        if isinstance(obj, (set, frozenset)):
            return sorted(list(obj))
        if hasattr(obj, "keys") and hasattr(obj, "__getitem__"):
            # read-only mapping views
            return {k: obj[k] for k in obj.keys()}
        if hasattr(obj, "to_dict"):
            return obj.to_dict()
        if hasattr(obj, "__dataclass_fields__"):
            return {name: getattr(obj, name) for name in obj.__dataclass_fields__}

        return super().default(obj)


def canonical_dumps(obj: Any) -> str:
    """
    Canonical serialization.

    Two values are structurally equal iff their canonical serializations
    are identical: keys sorted, no insignificant whitespace.
    """
    return json.dumps(
        obj,
        cls=CanonicalEncoder,
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
    )


def fingerprint(obj: Any) -> str:
    """SHA256 of the canonical serialization."""
    return hashlib.sha256(canonical_dumps(obj).encode("utf-8")).hexdigest()
