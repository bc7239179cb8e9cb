from __future__ import annotations

import subprocess
import sys
import textwrap
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Sequence

import pytest

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"

if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

from patchgate.models.llm_client import GenerationRequest, LLMClient  # noqa: E402
from patchgate.tools.artifacts import ArtifactPaths  # noqa: E402
from patchgate.tools.gates import GateCommand  # noqa: E402
from patchgate.tools.vcs import GitRepository  # noqa: E402

LONG_DESCRIPTION = textwrap.dedent(
    """
    ## Summary
    Add a small helper that normalises user input before it reaches the domain layer.

    ## How to test
    Run the test suite; the new helper is covered by the existing gates.

    ## Risk & rollback
    Low risk. Revert the commit to roll back.
    """
).strip()


def run_git(root: Path, *args: str) -> str:
    process = subprocess.run(
        ["git", *args],
        cwd=root,
        check=True,
        capture_output=True,
        text=True,
    )
    return process.stdout.strip()


@dataclass(slots=True)
class SampleRepo:
    """Working repository with a bare ``origin`` remote."""

    root: Path
    origin: Path
    repo: GitRepository
    base_commit: str

    @property
    def artifacts(self) -> ArtifactPaths:
        return ArtifactPaths.under(self.root)

    def git(self, *args: str) -> str:
        return run_git(self.root, *args)

    def current_branch(self) -> str:
        return self.git("rev-parse", "--abbrev-ref", "HEAD")

    def branches(self) -> List[str]:
        output = self.git("for-each-ref", "--format=%(refname:short)", "refs/heads")
        return [line for line in output.splitlines() if line]

    def remote_branch(self, name: str) -> str | None:
        process = subprocess.run(
            ["git", "--git-dir", str(self.origin), "rev-parse", "--verify", "--quiet", f"refs/heads/{name}"],
            capture_output=True,
            text=True,
            check=False,
        )
        return process.stdout.strip() or None

    def write_patch(self, diff: str, description: str = LONG_DESCRIPTION) -> None:
        artifacts = self.artifacts
        artifacts.write(artifacts.patch, diff.rstrip("\n") + "\n")
        artifacts.write(artifacts.description, description + "\n")
        artifacts.write(artifacts.translated_description, description + "\n")


@pytest.fixture()
def sample_repo(tmp_path: Path) -> SampleRepo:
    """Create a git repository on ``main`` with one commit and a bare origin."""

    origin = tmp_path / "origin.git"
    subprocess.run(["git", "init", "--bare", "-q", str(origin)], check=True, capture_output=True)

    root = tmp_path / "work"
    root.mkdir()
    run_git(root, "init", "-q")
    run_git(root, "symbolic-ref", "HEAD", "refs/heads/main")
    run_git(root, "config", "user.email", "agent@example.com")
    run_git(root, "config", "user.name", "Patch Gate")
    run_git(root, "config", "commit.gpgsign", "false")

    (root / "src").mkdir()
    (root / "src" / "app.py").write_text("def greet(name):\n    return 'hello ' + name\n", encoding="utf-8")
    (root / "README.md").write_text("# sample\n", encoding="utf-8")
    run_git(root, "add", ".")
    run_git(root, "commit", "-q", "-m", "Initial sample state")
    run_git(root, "remote", "add", "origin", str(origin))

    return SampleRepo(
        root=root,
        origin=origin,
        repo=GitRepository(root),
        base_commit=run_git(root, "rev-parse", "HEAD"),
    )


def new_file_diff(path: str, lines: Sequence[str]) -> str:
    body = "\n".join(f"+{line}" for line in lines)
    return "\n".join(
        [
            f"diff --git a/{path} b/{path}",
            "new file mode 100644",
            "--- /dev/null",
            f"+++ b/{path}",
            f"@@ -0,0 +1,{len(lines)} @@",
            body,
        ]
    )


def modify_app_diff(new_return: str) -> str:
    return "\n".join(
        [
            "diff --git a/src/app.py b/src/app.py",
            "--- a/src/app.py",
            "+++ b/src/app.py",
            "@@ -1,2 +1,2 @@",
            " def greet(name):",
            "-    return 'hello ' + name",
            f"+    {new_return}",
        ]
    )


def render_output(diff: str | None, description: str | None = LONG_DESCRIPTION) -> str:
    parts = ["Here is the change."]
    if diff is not None:
        parts.append(f"```diff\n{diff}\n```")
    if description is not None:
        parts.append(f"```md\n{description}\n```")
    return "\n\n".join(parts) + "\n"


def python_gate(name: str, code: str, *, optional: bool = False) -> GateCommand:
    return GateCommand(name=name, command=[sys.executable, "-c", code], optional=optional)


PASSING_GATE_CODE = "print('ok')"


class ScriptedClient(LLMClient):
    """Generation client replaying canned outputs (or raising canned errors)."""

    def __init__(self, outputs: Sequence[Any] = ()) -> None:
        super().__init__(model="scripted-model")
        self.outputs: List[Any] = list(outputs)
        self.requests: List[GenerationRequest] = []
        self.payloads: List[Dict[str, Any]] = []

    def _raw_invoke(self, payload: Dict[str, Any]) -> str:
        self.payloads.append(payload)
        if not self.outputs:
            raise AssertionError("ScriptedClient ran out of outputs")
        item = self.outputs.pop(0)
        if isinstance(item, BaseException):
            raise item
        return item

    def generate(self, request: GenerationRequest) -> str:
        self.requests.append(request)
        return super().generate(request)


@dataclass
class RecordingPublisher:
    """Change-request publisher that records calls instead of contacting a host."""

    url: str = "https://example.test/pr/1"
    calls: List[Dict[str, Any]] = field(default_factory=list)
    error: BaseException | None = None

    def open_change_request(self, repo_root: Path, *, branch: str, title: str, body: str) -> str | None:
        self.calls.append({"repo_root": repo_root, "branch": branch, "title": title, "body": body})
        if self.error is not None:
            raise self.error
        return self.url
