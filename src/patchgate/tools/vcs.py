"""Git plumbing for transactional patch application.

Only the operations a patch transaction needs are wrapped: inspecting the base
commit, moving between branches, checking and applying a patch, committing,
pushing, and restoring the working copy to a recorded commit.
"""

from __future__ import annotations

from pathlib import Path
from typing import List, Sequence

import subprocess

from patchgate.errors import PatchgateError

APPLY_FLAGS: tuple[str, ...] = ("--recount", "--whitespace=nowarn", "-p1")


class GitError(PatchgateError):
    """Raised when a git command fails or the repository cannot be used."""

    def __init__(self, message: str, *, returncode: int | None = None, stderr: str = "") -> None:
        super().__init__(message, exit_code=returncode)
        self.returncode = returncode
        self.stderr = stderr


def _decode(data: bytes | None) -> str:
    return data.decode("utf-8", errors="replace") if data else ""


class GitRepository:
    """Run ``git`` commands against one working copy."""

    def __init__(self, root: Path | str) -> None:
        self.root = Path(root).resolve()
        if not (self.root / ".git").exists():
            raise GitError(f"Not a git repository: {self.root}")

    @classmethod
    def discover(cls, start: Path | str | None = None) -> "GitRepository":
        """Return the repository containing ``start`` (default: the current directory)."""

        origin = (Path(start) if start else Path.cwd()).resolve()
        for directory in (origin, *origin.parents):
            if (directory / ".git").exists():
                return cls(directory)
        raise GitError(f"{origin} is not inside a git repository")

    # ------------------------------------------------------------------ git IO
    def _run_git(
        self,
        args: Sequence[str],
        *,
        check: bool = True,
        input_text: str | None = None,
    ) -> subprocess.CompletedProcess[str]:
        process = subprocess.run(
            ["git", *args],
            cwd=self.root,
            input=input_text.encode("utf-8") if input_text is not None else None,
            capture_output=True,
            check=False,
        )
        result = subprocess.CompletedProcess(
            process.args,
            process.returncode,
            _decode(process.stdout),
            _decode(process.stderr),
        )
        if check and result.returncode != 0:
            detail = result.stderr.strip() or result.stdout.strip() or f"exit code {result.returncode}"
            raise GitError(
                f"git {' '.join(args)} failed: {detail}",
                returncode=result.returncode,
                stderr=result.stderr,
            )
        return result

    # -------------------------------------------------------------- branches
    def current_branch(self) -> str | None:
        """Return the current branch name or ``None`` when detached."""

        result = self._run_git(["symbolic-ref", "--quiet", "--short", "HEAD"], check=False)
        branch = result.stdout.strip()
        return branch if result.returncode == 0 and branch else None

    def head(self) -> str:
        """Return the commit SHA of ``HEAD``."""

        result = self._run_git(["rev-parse", "--verify", "HEAD"], check=True)
        return result.stdout.strip()

    def rev_parse(self, ref: str) -> str | None:
        result = self._run_git(["rev-parse", "--verify", "--quiet", ref], check=False)
        if result.returncode != 0:
            return None
        return result.stdout.strip() or None

    def branch_exists(self, name: str) -> bool:
        return self.rev_parse(f"refs/heads/{name}") is not None

    def checkout_reset(self, branch: str, start_point: str) -> None:
        """Create ``branch`` at ``start_point`` or reset it there if it exists."""

        self._run_git(["checkout", "-B", branch, start_point], check=True)

    def checkout(self, ref: str) -> None:
        self._run_git(["checkout", ref], check=True)

    def delete_branch(self, name: str) -> None:
        self._run_git(["branch", "-D", name], check=True)

    # ------------------------------------------------------------- repo status
    def status_porcelain(self) -> List[str]:
        """Return raw ``git status --porcelain`` lines."""

        result = self._run_git(["status", "--porcelain"], check=True)
        return [line for line in result.stdout.splitlines() if line.strip()]

    def ensure_excluded(self, pattern: str) -> bool:
        """Register ``pattern`` in ``.git/info/exclude``; return ``True`` when added."""

        exclude_path = self.root / ".git" / "info" / "exclude"
        exclude_path.parent.mkdir(parents=True, exist_ok=True)
        existing = exclude_path.read_text(encoding="utf-8") if exclude_path.exists() else ""
        if pattern in (line.strip() for line in existing.splitlines()):
            return False
        prefix = "" if not existing or existing.endswith("\n") else "\n"
        with exclude_path.open("a", encoding="utf-8") as handle:
            handle.write(f"{prefix}{pattern}\n")
        return True

    # ------------------------------------------------------------------ resets
    def reset_hard(self, commit: str) -> None:
        self._run_git(["reset", "--hard", commit], check=True)

    def clean_untracked(self) -> None:
        """Remove untracked files and directories (ignored files are kept)."""

        self._run_git(["clean", "-fd"], check=True)

    # ----------------------------------------------------------------- patches
    def apply_check(self, patch_text: str) -> subprocess.CompletedProcess[str]:
        """Dry-check ``patch_text`` against the working copy without touching it."""

        return self._run_git(["apply", "--check", *APPLY_FLAGS, "-"], check=False, input_text=patch_text)

    def apply_patch_file(self, patch_path: Path, *, check_only: bool = False) -> subprocess.CompletedProcess[str]:
        """Run ``git apply`` (optionally ``--check``) on ``patch_path``."""

        args: List[str] = ["apply"]
        if check_only:
            args.append("--check")
        args.extend(APPLY_FLAGS)
        args.append(str(patch_path))
        return self._run_git(args, check=False)

    # ----------------------------------------------------------------- commits
    def commit_all(self, message: str) -> str | None:
        """Stage every change and commit it; ``None`` when the tree had nothing to commit."""

        self._run_git(["add", "--all"], check=True)
        if not self._run_git(["diff", "--cached", "--name-only"], check=True).stdout.strip():
            return None
        self._run_git(["commit", "-m", message], check=True)
        return self.head()

    # -------------------------------------------------------------- remotes
    def push(self, remote: str, branch: str, *, set_upstream: bool = False) -> None:
        args = ["push", "-u", remote, branch] if set_upstream else ["push", remote, branch]
        self._run_git(args, check=True)

    def delete_remote_branch(self, remote: str, branch: str) -> None:
        self._run_git(["push", remote, "--delete", branch], check=True)


__all__ = ["APPLY_FLAGS", "GitError", "GitRepository"]
