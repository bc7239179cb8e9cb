"""Locations and helpers for the per-run diagnostic artifacts."""

from __future__ import annotations

import shutil
from dataclasses import dataclass
from pathlib import Path

DEFAULT_ARTIFACT_DIR = ".patchgate"


@dataclass(slots=True, frozen=True)
class ArtifactPaths:
    """Files written by a run, all overwritten on the next one."""

    root: Path

    @classmethod
    def under(cls, repo_root: Path, directory: str | Path = DEFAULT_ARTIFACT_DIR) -> "ArtifactPaths":
        candidate = Path(directory)
        if not candidate.is_absolute():
            candidate = repo_root / candidate
        return cls(root=candidate)

    @property
    def patch(self) -> Path:
        return self.root / "patch.diff"

    @property
    def description(self) -> Path:
        return self.root / "PR_BODY.en.md"

    @property
    def translated_description(self) -> Path:
        return self.root / "PR_BODY.md"

    @property
    def last_output(self) -> Path:
        return self.root / "last-output.txt"

    @property
    def gates_log(self) -> Path:
        return self.root / "gates.log"

    @property
    def last_failed_gates_log(self) -> Path:
        return self.root / "gates.last.log"

    def ensure(self) -> None:
        self.root.mkdir(parents=True, exist_ok=True)

    def write(self, path: Path, text: str) -> Path:
        self.ensure()
        path.write_text(text, encoding="utf-8")
        return path

    def read(self, path: Path) -> str:
        """Return the file contents, or an empty string when it does not exist."""
        try:
            return path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return ""

    def clear_candidates(self) -> None:
        """Remove the outputs of a previous generation attempt."""
        for path in (self.patch, self.description, self.translated_description, self.last_output):
            path.unlink(missing_ok=True)

    def clear_run(self) -> None:
        """Remove every artifact, including gate logs left by an earlier run."""
        self.clear_candidates()
        self.gates_log.unlink(missing_ok=True)
        self.last_failed_gates_log.unlink(missing_ok=True)

    def preserve_gates_log(self) -> bool:
        """Copy the gate log aside so it survives the next run."""
        if not self.gates_log.exists():
            return False
        self.ensure()
        shutil.copyfile(self.gates_log, self.last_failed_gates_log)
        return True

    def exclude_pattern(self, repo_root: Path) -> str | None:
        """Return the ``.git/info/exclude`` pattern for the artifact directory.

        ``None`` when the directory lives outside ``repo_root``.
        """
        try:
            relative = self.root.resolve().relative_to(repo_root.resolve())
        except ValueError:
            return None
        return f"/{relative.as_posix()}/"


def tail(text: str, lines: int = 120) -> str:
    """Return the last ``lines`` lines of ``text``."""
    parts = (text or "").split("\n")
    return "\n".join(parts[-lines:])


__all__ = ["ArtifactPaths", "DEFAULT_ARTIFACT_DIR", "tail"]
