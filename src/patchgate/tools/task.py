"""Task document loading."""

from __future__ import annotations

import re
from dataclasses import dataclass
from pathlib import Path

from patchgate.errors import ConfigurationError

_FILES_SECTION = re.compile(r"^##\s+Files to create\s*$", re.IGNORECASE)
_HEADING = re.compile(r"^##\s+")
_BULLET = re.compile(r"^-\s+(.+)$")
_PLACEHOLDER = "(none)"


@dataclass(slots=True, frozen=True)
class TaskSpec:
    """Free-text change request plus the paths the patch must touch."""

    description: str
    required_files: tuple[str, ...] = ()

    @classmethod
    def from_text(cls, text: str) -> "TaskSpec":
        description = text.strip()
        if not description:
            raise ConfigurationError("Task description is empty.")
        return cls(description=description, required_files=parse_required_files(description))

    @classmethod
    def from_file(cls, path: Path) -> "TaskSpec":
        if not path.exists():
            raise ConfigurationError(f"Task file is required: {path}")
        try:
            return cls.from_text(path.read_text(encoding="utf-8"))
        except ConfigurationError as error:
            raise ConfigurationError(f"Task file is empty: {path}") from error


def parse_required_files(task_text: str) -> tuple[str, ...]:
    """Collect bullet entries under the ``## Files to create`` heading."""
    required: list[str] = []
    in_section = False
    for raw in task_text.splitlines():
        line = raw.strip()
        if _FILES_SECTION.match(line):
            in_section = True
            continue
        if in_section and _HEADING.match(line):
            break
        if not in_section:
            continue
        match = _BULLET.match(line)
        if not match:
            continue
        path = match.group(1).replace("**", "").strip().strip("`")
        if path and path != _PLACEHOLDER:
            required.append(path)
    return tuple(required)


__all__ = ["TaskSpec", "parse_required_files"]
