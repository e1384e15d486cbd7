"""Plan identifiers derived from human-readable plan names."""

from __future__ import annotations

import hashlib
import re
from typing import Callable, Pattern

_UNSAFE: Pattern[str] = re.compile(r"[^a-z0-9_.-]+")
_DASHES: Pattern[str] = re.compile(r"-{2,}|\.{2,}")

MAX_PLAN_ID_LENGTH = 64


def slugify(value: str | None, *, fallback: str = "plan", max_length: int = MAX_PLAN_ID_LENGTH) -> str:
    """Lowercase ``value`` into a filesystem-safe identifier.

    Long slugs are cut and suffixed with a short digest of the full slug so
    that two long names sharing a prefix still map to different ids.
    """
    slug = _DASHES.sub("-", _UNSAFE.sub("-", (value or "").strip().lower())).strip("-._")
    if not slug:
        slug = _DASHES.sub("-", _UNSAFE.sub("-", fallback.lower())).strip("-._") or "plan"
    if len(slug) <= max_length:
        return slug
    digest = hashlib.sha256(slug.encode("utf-8")).hexdigest()[:8]
    head = slug[: max(max_length - len(digest) - 1, 1)].rstrip("-._")
    return f"{head}-{digest}"


def unique_plan_id(name: str, exists: Callable[[str], bool]) -> str:
    """Slug ``name`` and append ``-2``, ``-3``... until ``exists`` reports a free id."""
    base = slugify(name)
    candidate = base
    counter = 2
    while exists(candidate):
        candidate = f"{base}-{counter}"
        counter += 1
    return candidate


__all__ = ["MAX_PLAN_ID_LENGTH", "slugify", "unique_plan_id"]
