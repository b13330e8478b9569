"""Hashing utilities for DV360 Sync."""
from __future__ import annotations

import hashlib
import json
from typing import Any


def canonical_json(payload: Any) -> str:
    """Serialise ``payload`` with sorted keys so equal content yields equal text."""

    return json.dumps(payload, sort_keys=True, separators=(",", ":"), ensure_ascii=False, default=str)


def content_sha256(payload: Any) -> str:
    """Return the SHA-256 hash of the canonical JSON form of ``payload``."""

    return hashlib.sha256(canonical_json(payload).encode("utf-8")).hexdigest()


__all__ = ["canonical_json", "content_sha256"]
