"""Turn free text into a git branch name."""

from __future__ import annotations

import hashlib
import re
from typing import Pattern

_DISALLOWED: Pattern[str] = re.compile(r"[^a-z0-9\-_/]+")
_REPEATED_DASH = re.compile(r"-{2,}")
_REPEATED_SLASH = re.compile(r"/{2,}")
_DIGEST_LENGTH = 8


def sanitize_branch_name(value: str | None, *, fallback: str = "feat/ai-run", max_length: int = 100) -> str:
    """Lowercase ``value`` and keep only ``[a-z0-9-_/]``, collapsing dashes."""
    name = _DISALLOWED.sub("-", (value or "").strip().lower())
    name = _REPEATED_SLASH.sub("/", _REPEATED_DASH.sub("-", name)).strip("-/")
    name = name or fallback
    return abbreviate_slug(name, max_length=max_length)


def abbreviate_slug(name: str, *, max_length: int = 100) -> str:
    """Cut ``name`` down to ``max_length``, suffixing a digest of the full name."""
    if len(name) <= max_length:
        return name
    digest = hashlib.sha256(name.encode("utf-8")).hexdigest()[:_DIGEST_LENGTH]
    head = name[: max(max_length - _DIGEST_LENGTH - 1, 1)].rstrip("-/") or name[0]
    return f"{head}-{digest}"


__all__ = ["abbreviate_slug", "sanitize_branch_name"]
