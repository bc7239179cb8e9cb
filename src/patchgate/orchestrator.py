"""Generate → validate → dry-run loop with bounded retries.

Each attempt walks ``GENERATE → VALIDATE → DRY_TRANSACT`` and ends in an
:class:`AttemptOutcome`: success, retry with feedback, or fatal. The loop in
:meth:`RetryOrchestrator.run` only inspects outcomes; exceptions raised by the
collaborators are converted into outcomes at the stage boundary.

After a successful dry run the already-validated artifacts are published by a
second transaction without regenerating anything. The working copy is not
re-checked between the two transactions; a concurrent external change in that
window is not detected.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, List, Optional, Sequence

from patchgate.errors import (
    PatchgateError,
    PublishFailure,
    RetryBudgetExhausted,
)
from patchgate.models.llm_client import GenerationRequest, LLMClient
from patchgate.prompts import RETRY_RULES, render_attempt_input, render_feedback, render_instructions
from patchgate.telemetry import emit_event
from patchgate.tools.artifacts import ArtifactPaths
from patchgate.tools.extractor import CandidatePatch, PatchExtractor
from patchgate.tools.task import TaskSpec
from patchgate.transaction import TransactionManager, TransactionMode, TransactionResult

LOGGER = logging.getLogger(__name__)

DEFAULT_MAX_ATTEMPTS = 3


class Stage(str, Enum):
    GENERATE = "generate"
    VALIDATE = "validate"
    DRY_TRANSACT = "dry-transact"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class OutcomeKind(str, Enum):
    SUCCESS = "success"
    RETRY = "retry"
    FATAL = "fatal"


@dataclass(slots=True)
class Attempt:
    """One pass through the loop."""

    index: int
    feedback: Optional[str] = None
    extra_rules: Optional[str] = None
    previous_output: Optional[str] = None


@dataclass(slots=True)
class AttemptOutcome:
    """Transition data produced by one attempt."""

    kind: OutcomeKind
    stage: Stage
    attempt: int
    error: Optional[PatchgateError] = None
    feedback: Optional[str] = None
    raw_output: Optional[str] = None
    candidate: Optional[CandidatePatch] = None
    transaction: Optional[TransactionResult] = None


@dataclass(slots=True)
class GenerationSettings:
    model: Optional[str] = None
    max_tokens: int = 2200
    temperature: Optional[float] = None


@dataclass(slots=True)
class RunResult:
    """Final state of a run that did not fail."""

    stage: Stage
    attempts: List[AttemptOutcome] = field(default_factory=list)
    dry_run: Optional[TransactionResult] = None
    published: Optional[TransactionResult] = None


class RetryOrchestrator:
    """Drive up to ``max_attempts`` generate/validate/dry-run cycles."""

    def __init__(
        self,
        *,
        client: LLMClient,
        extractor: PatchExtractor,
        transactions: TransactionManager,
        artifacts: ArtifactPaths,
        generation: GenerationSettings | None = None,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        gate_commands: Sequence[str] = (),
        on_stage: Callable[[int, Stage], None] | None = None,
    ) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.client = client
        self.extractor = extractor
        self.transactions = transactions
        self.artifacts = artifacts
        self.generation = generation or GenerationSettings()
        self.max_attempts = max_attempts
        self.gate_commands = tuple(gate_commands)
        self._on_stage = on_stage

    # ------------------------------------------------------------------ loop
    def run(
        self,
        *,
        bundle: str,
        task: TaskSpec,
        branch: str,
        title: str,
        dry_run_only: bool = False,
    ) -> RunResult:
        self.transactions.prepare_workspace()
        self.artifacts.clear_run()
        result = RunResult(stage=Stage.GENERATE)
        attempt = Attempt(index=1)

        while True:
            outcome = self.run_attempt(attempt, bundle=bundle, task=task, branch=branch, title=title)
            result.attempts.append(outcome)

            if outcome.kind is OutcomeKind.SUCCESS:
                result.dry_run = outcome.transaction
                break

            error = outcome.error
            if error is None:
                raise RuntimeError(
                    f"Attempt {attempt.index} ended as {outcome.kind.value} without an error."
                )
            emit_event(
                "attempt_failed",
                attempt=attempt.index,
                stage=outcome.stage.value,
                error_type=type(error).__name__,
                error=str(error),
            )
            LOGGER.warning("Attempt %d failed during %s: %s", attempt.index, outcome.stage.value, error)

            if outcome.kind is OutcomeKind.FATAL:
                self._notify(attempt.index, Stage.FAILED)
                raise error

            if attempt.index >= self.max_attempts:
                self._notify(attempt.index, Stage.FAILED)
                raise RetryBudgetExhausted(
                    f"Could not produce a valid diff+description after {attempt.index} attempt(s): {error}",
                    attempts=attempt.index,
                    last_error=error,
                ) from error

            attempt = Attempt(
                index=attempt.index + 1,
                feedback=outcome.feedback,
                extra_rules=RETRY_RULES,
                previous_output=outcome.raw_output,
            )

        self._notify(attempt.index, Stage.SUCCEEDED)
        result.stage = Stage.SUCCEEDED
        if dry_run_only:
            return result

        result.published = self.publish(branch=branch, title=title)
        return result

    # --------------------------------------------------------------- attempt
    def run_attempt(
        self,
        attempt: Attempt,
        *,
        bundle: str,
        task: TaskSpec,
        branch: str,
        title: str,
    ) -> AttemptOutcome:
        self.artifacts.clear_candidates()

        self._notify(attempt.index, Stage.GENERATE)
        try:
            raw_output = self.generate(attempt, bundle=bundle, task=task)
        except PatchgateError as error:
            return self._failed(Stage.GENERATE, attempt, error, attempt.previous_output)

        self._notify(attempt.index, Stage.VALIDATE)
        try:
            candidate = self.extractor.process(raw_output, task.required_files)
        except PatchgateError as error:
            return self._failed(Stage.VALIDATE, attempt, error, raw_output)

        self._notify(attempt.index, Stage.DRY_TRANSACT)
        try:
            transaction = self.transactions.run(branch, title, TransactionMode.DRY_RUN)
        except PatchgateError as error:
            return self._failed(Stage.DRY_TRANSACT, attempt, error, raw_output)

        return AttemptOutcome(
            kind=OutcomeKind.SUCCESS,
            stage=Stage.SUCCEEDED,
            attempt=attempt.index,
            raw_output=raw_output,
            candidate=candidate,
            transaction=transaction,
        )

    def generate(self, attempt: Attempt, *, bundle: str, task: TaskSpec) -> str:
        request = GenerationRequest(
            prompt=render_attempt_input(
                bundle=bundle,
                task=task.description,
                attempt=attempt.index,
                feedback=attempt.feedback,
            ),
            system=render_instructions(
                required_files=task.required_files,
                gate_commands=self.gate_commands,
                extra_rules=attempt.extra_rules,
            ),
            model=self.generation.model,
            max_tokens=self.generation.max_tokens,
            temperature=self.generation.temperature,
        )
        raw_output = self.client.generate(request)
        self.artifacts.write(self.artifacts.last_output, raw_output)
        return raw_output

    def publish(self, *, branch: str, title: str) -> TransactionResult:
        """Promote the dry-run-validated artifacts; failures here are fatal."""
        try:
            return self.transactions.run(branch, title, TransactionMode.PUBLISH)
        except PatchgateError as error:
            LOGGER.error(
                "Publish transaction failed even though the dry run passed with the same artifacts: %s",
                error,
            )
            emit_event("publish_failed_after_dry_run", branch=branch, error=str(error))
            raise PublishFailure(
                f"Publish failed after a successful dry run (not retried): {error}",
                cause=error,
            ) from error

    # --------------------------------------------------------------- helpers
    def _failed(
        self,
        stage: Stage,
        attempt: Attempt,
        error: PatchgateError,
        raw_output: Optional[str],
    ) -> AttemptOutcome:
        if not error.recoverable:
            return AttemptOutcome(kind=OutcomeKind.FATAL, stage=stage, attempt=attempt.index, error=error)
        return AttemptOutcome(
            kind=OutcomeKind.RETRY,
            stage=stage,
            attempt=attempt.index,
            error=error,
            raw_output=raw_output,
            feedback=self.build_feedback(stage, error, raw_output or ""),
        )

    def build_feedback(self, stage: Stage, error: PatchgateError, previous_output: str) -> str:
        """Feedback for the next attempt.

        ``previous_output`` is the latest raw generation text; an attempt that
        failed before producing any keeps the one from the attempt before it.
        """
        if stage is Stage.DRY_TRANSACT:
            return render_feedback(
                previous_output=previous_output,
                gates_log=self.artifacts.read(self.artifacts.gates_log),
                gates_label="DRY_RUN_FAILED_GATES_LOG_TAIL",
            )
        return render_feedback(
            previous_output=previous_output,
            error=str(error),
            gates_log=self.artifacts.read(self.artifacts.last_failed_gates_log),
        )

    def _notify(self, attempt: int, stage: Stage) -> None:
        LOGGER.info("Attempt %d: %s", attempt, stage.value)
        if self._on_stage is not None:
            self._on_stage(attempt, stage)


__all__ = [
    "Attempt",
    "AttemptOutcome",
    "DEFAULT_MAX_ATTEMPTS",
    "GenerationSettings",
    "OutcomeKind",
    "RetryOrchestrator",
    "RunResult",
    "Stage",
]
