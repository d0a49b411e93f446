"""Content fingerprinting for deduplication.

A fingerprint is a SHA-256 digest over whitespace/case-normalized content
plus a small set of identifying metadata fields. Two candidates with the same
fingerprint are treated as the same underlying content, but only when they
also belong to the same tenant (the tenant is not part of the digest; the
deduplicator keys on (tenant, fingerprint)).
"""

from __future__ import annotations

import hashlib
from collections.abc import Iterable, Mapping
from typing import Any

from fanout_rag.core.constants import FINGERPRINT_KEY_FIELDS


def normalize_content(content: str) -> str:
    """Lowercase and collapse whitespace."""
    return " ".join(content.lower().split())


def compute_fingerprint(
    content: str,
    metadata: Mapping[str, Any] | None = None,
    key_fields: Iterable[str] = FINGERPRINT_KEY_FIELDS,
) -> str:
    """Compute the dedup fingerprint for a piece of content.

    Args:
        content: Raw content or snippet.
        metadata: Candidate metadata; only ``key_fields`` are used.
        key_fields: Metadata keys folded into the digest when present.

    Returns:
        Hex-encoded SHA-256 digest.
    """
    digest = hashlib.sha256(normalize_content(content).encode("utf-8"))
    metadata = metadata or {}
    for key in sorted(key_fields):
        value = metadata.get(key)
        if value is None or value == "":
            continue
        digest.update(b"\x1f")
        digest.update(f"{key}={value}".encode("utf-8"))
    return digest.hexdigest()
