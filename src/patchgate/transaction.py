"""All-or-nothing application of a generated patch.

A transaction records the current branch and commit, moves onto a working
branch, applies ``patch.diff``, runs the quality gates and then either
publishes the result (commit, push, change request) or restores the working
copy to the recorded commit. The :class:`TransactionContext` returned by
:meth:`TransactionManager.begin` is passed explicitly to every step so the
state being mutated is always visible at the call site.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum

from patchgate.errors import ApplyFailure, GateFailure, MissingArtifact, PreconditionViolation
from patchgate.telemetry import emit_event
from patchgate.tools.artifacts import ArtifactPaths, tail
from patchgate.tools.gates import GateReport, GateRunner
from patchgate.tools.host import ChangeRequestPublisher
from patchgate.tools.vcs import GitError, GitRepository

LOGGER = logging.getLogger(__name__)

DEFAULT_LOG_TAIL_LINES = 120


class TransactionMode(str, Enum):
    DRY_RUN = "dry-run"
    PUBLISH = "publish"


@dataclass(slots=True)
class TransactionContext:
    """Rollback target and working branch of one in-flight transaction.

    ``pushed_remote`` is set once a working branch owned by the transaction has
    been pushed, so a later failure also removes it from that remote.
    """

    repo: GitRepository
    base_branch: str | None
    base_commit: str
    working_branch: str
    pushed_remote: str | None = None

    @property
    def restore_ref(self) -> str:
        """Ref to check out on rollback; the commit itself when HEAD was detached."""
        return self.base_branch or self.base_commit

    @property
    def owns_branch(self) -> bool:
        return self.working_branch != self.base_branch


@dataclass(slots=True)
class TransactionResult:
    """Outcome of a transaction that passed every gate."""

    context: TransactionContext
    mode: TransactionMode
    gate_report: GateReport
    commit_sha: str | None = None
    change_request_url: str | None = None

    @property
    def published(self) -> bool:
        return self.mode is TransactionMode.PUBLISH


class TransactionManager:
    """Apply ``patch.diff`` on a working branch and promote or undo it."""

    def __init__(
        self,
        repo: GitRepository,
        artifacts: ArtifactPaths,
        gate_runner: GateRunner,
        *,
        publisher: ChangeRequestPublisher | None = None,
        remote: str = "origin",
        log_tail_lines: int = DEFAULT_LOG_TAIL_LINES,
    ) -> None:
        self.repo = repo
        self.artifacts = artifacts
        self.gate_runner = gate_runner
        self.publisher = publisher
        self.remote = remote
        self.log_tail_lines = log_tail_lines

    # ------------------------------------------------------------- lifecycle
    def prepare_workspace(self) -> None:
        """Keep the artifact directory out of status, clean and commits."""
        pattern = self.artifacts.exclude_pattern(self.repo.root)
        if pattern and self.repo.ensure_excluded(pattern):
            LOGGER.debug("Registered %s in .git/info/exclude", pattern)
        self.artifacts.ensure()

    def begin(self, branch: str) -> TransactionContext:
        """Check the working copy is clean and move onto ``branch`` at ``HEAD``."""
        self.prepare_workspace()
        dirty = self.repo.status_porcelain()
        if dirty:
            raise PreconditionViolation(
                "Working tree is not clean. Please commit/stash first.\n" + "\n".join(dirty),
                dirty_entries=dirty,
            )

        context = TransactionContext(
            repo=self.repo,
            base_branch=self.repo.current_branch(),
            base_commit=self.repo.head(),
            working_branch=branch,
        )
        self.repo.checkout_reset(branch, context.base_commit)
        emit_event(
            "transaction_started",
            branch=branch,
            base_branch=context.base_branch,
            base_commit=context.base_commit,
        )
        return context

    def run(
        self,
        branch: str,
        title: str,
        mode: TransactionMode = TransactionMode.DRY_RUN,
        *,
        body: str | None = None,
    ) -> TransactionResult:
        """Apply, gate, then publish or roll back; any failure rolls back first."""
        context = self.begin(branch)
        result = TransactionResult(context=context, mode=mode, gate_report=GateReport())
        try:
            self.require_patch()
            self.apply(context)
            result.gate_report = self.run_gates(context)
            if mode is TransactionMode.PUBLISH:
                result.commit_sha, result.change_request_url = self.publish(
                    context, title, self._resolve_body(body)
                )
        except BaseException:
            self.rollback(context)
            raise

        if mode is TransactionMode.DRY_RUN:
            LOGGER.info("Dry run passed; restoring the working copy.")
            self.rollback(context, preserve_log=False)
        return result

    # ----------------------------------------------------------------- steps
    def require_patch(self) -> None:
        if not self.artifacts.patch.exists():
            raise MissingArtifact(f"{self.artifacts.patch} not found.")

    def apply(self, context: TransactionContext) -> None:
        patch_path = self.artifacts.patch
        check = context.repo.apply_patch_file(patch_path, check_only=True)
        if check.returncode != 0:
            self.artifacts.write(self.artifacts.gates_log, f"[git apply --check failed]\n{check.stderr}\n")
            raise ApplyFailure(
                f"git apply --check failed: {check.stderr.strip() or 'unknown error'}",
                exit_code=check.returncode,
            )

        applied = context.repo.apply_patch_file(patch_path)
        if applied.returncode != 0:
            self.artifacts.write(self.artifacts.gates_log, f"[git apply failed]\n{applied.stderr}\n")
            raise ApplyFailure(
                f"git apply failed: {applied.stderr.strip() or 'unknown error'}",
                exit_code=applied.returncode,
            )
        emit_event("patch_applied", branch=context.working_branch, patch_path=patch_path)

    def run_gates(self, context: TransactionContext) -> GateReport:
        report = self.gate_runner.run(context.repo.root)
        self.artifacts.write(self.artifacts.gates_log, report.log)

        failed = report.failed_result
        if failed is None:
            emit_event("gates_passed", branch=context.working_branch, gates=len(report.results))
            return report

        log_tail = tail(report.log, self.log_tail_lines)
        LOGGER.error("Gates tail (last %d lines):\n%s", self.log_tail_lines, log_tail)
        emit_event(
            "gates_failed",
            branch=context.working_branch,
            gate=failed.name,
            position=report.failed_position,
            exit_code=report.exit_code,
        )
        raise GateFailure(
            f"Quality gate '{failed.name}' failed at position {report.failed_position} "
            f"(exit {report.exit_code}).",
            exit_code=report.exit_code,
            gate_name=failed.name,
            position=report.failed_position or 0,
            log_tail=log_tail,
        )

    def publish(self, context: TransactionContext, title: str, body: str) -> tuple[str, str | None]:
        commit_sha = context.repo.commit_all(title)
        if commit_sha is None:
            raise GitError("Patch produced no changes to commit.")
        context.repo.push(self.remote, context.working_branch, set_upstream=True)
        if context.owns_branch:
            context.pushed_remote = self.remote

        url: str | None = None
        if self.publisher is not None:
            url = self.publisher.open_change_request(
                context.repo.root,
                branch=context.working_branch,
                title=title,
                body=body,
            )
        emit_event(
            "transaction_published",
            branch=context.working_branch,
            commit=commit_sha,
            change_request=url,
        )
        return commit_sha, url

    # -------------------------------------------------------------- rollback
    def rollback(self, context: TransactionContext, *, preserve_log: bool = True) -> None:
        """Restore the recorded base commit and branch; never raises."""
        if preserve_log:
            try:
                self.artifacts.preserve_gates_log()
            except OSError as error:
                LOGGER.warning("Could not preserve gate log: %s", error)

        repo = context.repo
        steps = [
            ("reset", lambda: repo.reset_hard(context.base_commit)),
            ("clean", repo.clean_untracked),
            ("checkout", lambda: repo.checkout(context.restore_ref)),
        ]
        for label, step in steps:
            try:
                step()
            except GitError as error:
                LOGGER.error("Rollback step %s failed: %s", label, error)

        if context.pushed_remote is not None:
            try:
                repo.delete_remote_branch(context.pushed_remote, context.working_branch)
            except GitError as error:
                LOGGER.error(
                    "Rollback could not delete %s on %s: %s",
                    context.working_branch,
                    context.pushed_remote,
                    error,
                )
            else:
                context.pushed_remote = None

        if context.owns_branch and repo.branch_exists(context.working_branch):
            try:
                repo.delete_branch(context.working_branch)
            except GitError as error:
                LOGGER.error("Rollback could not delete branch %s: %s", context.working_branch, error)

        emit_event(
            "transaction_rolled_back",
            branch=context.working_branch,
            base_commit=context.base_commit,
        )

    def _resolve_body(self, body: str | None) -> str:
        if body is not None:
            return body
        for candidate in (self.artifacts.translated_description, self.artifacts.description):
            text = self.artifacts.read(candidate)
            if text.strip():
                return text
        return ""


__all__ = [
    "TransactionContext",
    "TransactionManager",
    "TransactionMode",
    "TransactionResult",
]
