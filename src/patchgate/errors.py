"""Error taxonomy shared by the generate/validate/transact pipeline.

Every error carries two pieces of routing information: ``recoverable`` tells
the retry loop whether the failure may be turned into feedback for another
attempt, and ``exit_code`` is what the CLI exits with when the error ends the
run.
"""

from __future__ import annotations

from typing import Any, Mapping, Sequence


class PatchgateError(RuntimeError):
    """Base class for all pipeline failures."""

    recoverable: bool = False
    default_exit_code: int = 1

    def __init__(
        self,
        message: str,
        *,
        exit_code: int | None = None,
        details: Mapping[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.exit_code = exit_code if exit_code else self.default_exit_code
        self.details: dict[str, Any] = dict(details or {})


class ConfigurationError(PatchgateError):
    """Raised when required configuration or input files are missing."""

    default_exit_code = 2


class PreconditionViolation(PatchgateError):
    """The working copy was dirty before a transaction started."""

    default_exit_code = 2

    def __init__(self, message: str, *, dirty_entries: Sequence[str] = ()) -> None:
        super().__init__(message)
        self.dirty_entries = tuple(dirty_entries)


class MissingArtifact(PatchgateError):
    """A transaction was started without the patch artifact on disk."""

    default_exit_code = 2


class StructuralValidationFailure(PatchgateError):
    """Generated output failed the structural diff/description checks."""

    recoverable = True

    def __init__(self, message: str, *, missing_paths: Sequence[str] = ()) -> None:
        super().__init__(message)
        self.missing_paths = tuple(missing_paths)


class ApplyFailure(PatchgateError):
    """The patch does not apply against the base commit."""

    recoverable = True


class GateFailure(PatchgateError):
    """A verification command exited non-zero."""

    recoverable = True

    def __init__(
        self,
        message: str,
        *,
        exit_code: int | None = None,
        gate_name: str = "",
        position: int = 0,
        log_tail: str = "",
    ) -> None:
        super().__init__(message, exit_code=exit_code)
        self.gate_name = gate_name
        self.position = position
        self.log_tail = log_tail


class ExternalServiceFailure(PatchgateError):
    """A generation or host API call failed or returned nothing usable."""

    recoverable = True

    def __init__(
        self,
        message: str,
        *,
        status: int | None = None,
        body: str = "",
        exit_code: int | None = None,
    ) -> None:
        super().__init__(message, exit_code=exit_code)
        self.status = status
        self.body = body


class RetryBudgetExhausted(PatchgateError):
    """Every attempt failed; the run is over."""

    def __init__(self, message: str, *, attempts: int, last_error: BaseException | None = None) -> None:
        exit_code = getattr(last_error, "exit_code", None) if last_error is not None else None
        super().__init__(message, exit_code=exit_code)
        self.attempts = attempts
        self.last_error = last_error


class PublishFailure(PatchgateError):
    """The publish transaction failed after a dry run had already passed."""

    def __init__(self, message: str, *, cause: BaseException | None = None) -> None:
        super().__init__(message, exit_code=getattr(cause, "exit_code", None))
        self.cause = cause


__all__ = [
    "ApplyFailure",
    "ConfigurationError",
    "ExternalServiceFailure",
    "GateFailure",
    "MissingArtifact",
    "PatchgateError",
    "PreconditionViolation",
    "PublishFailure",
    "RetryBudgetExhausted",
    "StructuralValidationFailure",
]
