"""Opening change requests on the code host."""

from __future__ import annotations

import logging
import shutil
import subprocess
from pathlib import Path
from typing import List, Protocol

from patchgate.errors import ExternalServiceFailure

LOGGER = logging.getLogger(__name__)


class ChangeRequestPublisher(Protocol):
    """Anything that can open a pull request for a pushed branch."""

    def open_change_request(self, repo_root: Path, *, branch: str, title: str, body: str) -> str | None: ...


class GitHubCliPublisher:
    """Open pull requests through ``gh pr create``."""

    def __init__(self, executable: str = "gh") -> None:
        self.executable = executable

    def command(self, *, branch: str, title: str, body: str) -> List[str]:
        args = [self.executable, "pr", "create", "--head", branch, "--title", title, "--fill"]
        if body.strip():
            args.extend(["--body", body])
        return args

    def open_change_request(self, repo_root: Path, *, branch: str, title: str, body: str) -> str | None:
        if shutil.which(self.executable) is None:
            raise ExternalServiceFailure(f"Executable not available: {self.executable}")
        process = subprocess.run(  # noqa: S603  # arguments are built from known values
            self.command(branch=branch, title=title, body=body),
            cwd=repo_root,
            capture_output=True,
            text=True,
            check=False,
        )
        if process.returncode != 0:
            message = process.stderr.strip() or process.stdout.strip() or "unknown error"
            raise ExternalServiceFailure(
                f"gh pr create failed: {message}",
                status=process.returncode,
                body=process.stderr,
                exit_code=process.returncode,
            )
        url = process.stdout.strip().splitlines()[-1] if process.stdout.strip() else None
        LOGGER.info("Opened change request %s", url or "(no URL reported)")
        return url


__all__ = ["ChangeRequestPublisher", "GitHubCliPublisher"]
