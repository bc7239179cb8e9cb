"""Quality gate orchestration.

Gates are shell-invocable verification commands (tests, lint, type check,
format check) executed in order against the working copy. Output is streamed
live and accumulated into a single log; the first failing command stops the
run.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, List, Literal

import logging
import os
import shlex
import shutil
import subprocess
import sys

LOGGER = logging.getLogger(__name__)

GateStatus = Literal["passed", "failed", "skipped"]
OutputSink = Callable[[str], Any]

MISSING_EXECUTABLE_EXIT_CODE = 127


@dataclass(slots=True)
class GateCommand:
    """Description of a single verification command."""

    name: str
    command: Sequence[str]
    optional: bool = False

    def display(self) -> str:
        return " ".join(self.command)

    def run(self, cwd: Path, sink: OutputSink | None = None) -> "GateResult":
        header = f"\n$ {self.display()}\n"
        if sink is not None:
            sink(header)

        executable = self.command[0]
        resolved = resolve_executable(executable, cwd)
        if resolved is None:
            message = f"Executable not available: {executable}\n"
            if sink is not None:
                sink(message)
            status: GateStatus = "skipped" if self.optional else "failed"
            return GateResult(
                name=self.name,
                command=list(self.command),
                status=status,
                exit_code=None if self.optional else MISSING_EXECUTABLE_EXIT_CODE,
                output=header + message,
            )

        chunks: List[str] = [header]
        process = subprocess.Popen(  # noqa: S603  # command is sourced from gate config
            [resolved, *self.command[1:]],
            cwd=cwd,
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            text=True,
            encoding="utf-8",
            errors="replace",
        )
        assert process.stdout is not None
        with process.stdout:
            for line in process.stdout:
                chunks.append(line)
                if sink is not None:
                    sink(line)
        returncode = process.wait()
        return GateResult(
            name=self.name,
            command=list(self.command),
            status="passed" if returncode == 0 else "failed",
            exit_code=returncode,
            output="".join(chunks),
        )


@dataclass(slots=True)
class GateResult:
    """Result produced by :class:`GateCommand`."""

    name: str
    command: List[str]
    status: GateStatus
    exit_code: int | None
    output: str

    @property
    def failed(self) -> bool:
        return self.status == "failed"

    def short_message(self) -> str:
        if self.status == "passed":
            return f"{self.name}: passed"
        if self.status == "skipped":
            return f"{self.name}: skipped"
        return f"{self.name}: failed (exit {self.exit_code})"


@dataclass(slots=True)
class GateReport:
    """Ordered outcome of a gate run; stops at the first failure."""

    results: List[GateResult] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not any(result.failed for result in self.results)

    @property
    def failed_result(self) -> GateResult | None:
        for result in self.results:
            if result.failed:
                return result
        return None

    @property
    def failed_position(self) -> int | None:
        """1-based position of the failing gate in the configured list."""
        for index, result in enumerate(self.results, start=1):
            if result.failed:
                return index
        return None

    @property
    def exit_code(self) -> int:
        failed = self.failed_result
        if failed is None:
            return 0
        return failed.exit_code or 1

    @property
    def log(self) -> str:
        return "".join(result.output for result in self.results)

    def format_summary(self) -> str:
        if not self.results:
            return "No gates configured."
        return "\n".join(f"- {result.short_message()}" for result in self.results)


class GateRunner:
    """Run an ordered list of gates against ``cwd``."""

    def __init__(self, gates: Sequence[GateCommand], *, sink: OutputSink | None = None) -> None:
        self.gates = list(gates)
        self._sink = sink if sink is not None else _stdout_sink

    def run(self, cwd: Path) -> GateReport:
        report = GateReport()
        for position, gate in enumerate(self.gates, start=1):
            LOGGER.info("Running gate %d/%d: %s", position, len(self.gates), gate.display())
            result = gate.run(cwd, self._sink)
            report.results.append(result)
            if result.failed:
                LOGGER.warning(
                    "Gate %s failed at position %d with exit code %s",
                    gate.name,
                    position,
                    result.exit_code,
                )
                break
        return report


def _stdout_sink(text: str) -> None:
    sys.stdout.write(text)
    sys.stdout.flush()


DEFAULT_GATES: tuple[GateCommand, ...] = (
    GateCommand(name="test", command=("pnpm", "test")),
    GateCommand(name="lint", command=("pnpm", "lint")),
    GateCommand(name="typecheck", command=("pnpm", "typecheck")),
    GateCommand(name="format", command=("pnpm", "format:check")),
)


def _split_command(command: Any) -> List[str]:
    if isinstance(command, str):
        return shlex.split(command)
    return [str(part) for part in command or []]


def gates_from_config(raw: Sequence[Any] | None) -> List[GateCommand]:
    """Expand raw configuration entries into :class:`GateCommand` definitions."""
    if raw is None:
        return [GateCommand(name=item.name, command=item.command, optional=item.optional) for item in DEFAULT_GATES]

    gates: List[GateCommand] = []
    for entry in raw:
        if isinstance(entry, str):
            parts = _split_command(entry)
            if not parts:
                continue
            gates.append(GateCommand(name=_default_name(parts), command=parts))
            continue

        if isinstance(entry, Mapping):
            parts = _split_command(entry.get("command") or entry.get("cmd"))
            if not parts:
                continue
            name = str(entry.get("name")) if entry.get("name") else _default_name(parts)
            optional = bool(entry.get("optional", False))
            gates.append(GateCommand(name=name, command=parts, optional=optional))

    return gates


def resolve_executable(executable: str, cwd: Path) -> str | None:
    """Locate ``executable``; paths with a directory part are relative to ``cwd``."""
    if "/" not in executable and os.sep not in executable:
        return shutil.which(executable)
    return shutil.which(str(cwd / executable))


def _default_name(parts: Sequence[str]) -> str:
    # "pnpm lint" -> "lint"; bare executables name themselves.
    if len(parts) > 1 and parts[0] in {"pnpm", "npm", "yarn", "make", "poetry", "uv", "tox"}:
        return parts[-1]
    return Path(parts[0]).name


__all__ = [
    "DEFAULT_GATES",
    "GateCommand",
    "GateReport",
    "GateResult",
    "GateRunner",
    "gates_from_config",
    "resolve_executable",
]
