from __future__ import annotations

import hashlib
import json
from typing import Any, Mapping


def canonical_bytes(value: Any) -> bytes:
    try:
        text = json.dumps(
            value,
            sort_keys=True,
            separators=(",", ":"),
            ensure_ascii=True,
            allow_nan=False,
        )
    except (TypeError, ValueError) as exc:
        raise ValueError(f"non-canonical value: {exc}") from exc
    return text.encode("utf-8")


def config_digest(fields: Mapping[str, Any]) -> str:
    """
    Digest of the validated configuration fields.

    Only fields the gate reads are hashed, so key order, formatting and
    unknown keys in the source file do not affect the result.
    """
    hex_digest = hashlib.sha256(canonical_bytes(fields)).hexdigest()
    return f"sha256:{hex_digest}"
