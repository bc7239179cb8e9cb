"""Extraction and structural validation of generated patches.

Generation output is unstructured text expected to contain one fenced
```` ```diff ```` block and one fenced Markdown block with the change
description. Which block wins when several are present is decided by a
:class:`SelectionStrategy` so a stricter output contract can replace the
heuristics without touching the rest of the pipeline.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Iterable, Protocol, Sequence

from patchgate.errors import ApplyFailure, ExternalServiceFailure, StructuralValidationFailure
from patchgate.models.llm_client import GenerationRequest, LLMClient
from patchgate.prompts import render_translation_instructions
from patchgate.telemetry import emit_event

from .artifacts import ArtifactPaths
from .vcs import GitRepository

LOGGER = logging.getLogger(__name__)

DIFF_TAGS: tuple[str, ...] = ("diff",)
DESCRIPTION_TAGS: tuple[str, ...] = ("md", "markdown", "mdx")
MIN_DESCRIPTION_CHARS = 200
TRANSLATION_MAX_TOKENS = 1200

_DIFF_GIT_LINE = re.compile(r"^diff --git ", re.MULTILINE)
_SOURCE_LINE = re.compile(r"^--- ", re.MULTILINE)
_TARGET_LINE = re.compile(r"^\+\+\+ ", re.MULTILINE)
_HUNK_LINE = re.compile(r"^@@ ", re.MULTILINE)


def extract_fenced_blocks(text: str, tag: str) -> list[str]:
    """Return the bodies of all ```` ```<tag> ```` fenced blocks in order."""
    pattern = re.compile(r"```" + re.escape(tag) + r"\n(.*?)\n```", re.DOTALL)
    return [match.group(1).rstrip() for match in pattern.finditer(text or "")]


def _collect(text: str, tags: Iterable[str]) -> list[str]:
    blocks: list[str] = []
    for tag in tags:
        blocks.extend(extract_fenced_blocks(text, tag))
    return blocks


class SelectionStrategy(Protocol):
    """Ranks candidate blocks pulled from generation output."""

    def pick_diff(self, blocks: Sequence[str]) -> str | None: ...

    def pick_description(self, blocks: Sequence[str]) -> str | None: ...


@dataclass(slots=True)
class LongestDiffFirstDescription:
    """Default ranking: the longest diff, the first description unless it is too short."""

    min_description_chars: int = MIN_DESCRIPTION_CHARS

    def pick_diff(self, blocks: Sequence[str]) -> str | None:
        if not blocks:
            return None
        best = blocks[0]
        for block in blocks:
            if len(block) > len(best):
                best = block
        return best

    def pick_description(self, blocks: Sequence[str]) -> str | None:
        if not blocks:
            return None
        first = blocks[0]
        if len(first) >= self.min_description_chars:
            return first
        return self.pick_diff(blocks)


@dataclass(slots=True, frozen=True)
class CandidatePatch:
    """Diff and change description chosen from one generation attempt."""

    diff: str
    description: str
    raw_output: str = ""


def validate_unified_diff(diff: str) -> None:
    """Reject text that is not a git-style unified diff with at least one hunk."""
    if not _HUNK_LINE.search(diff):
        raise StructuralValidationFailure(
            "Diff contains no real change: no @@ hunk found (header-only diff)."
        )
    missing = [
        label
        for label, pattern in (
            ("`diff --git` header", _DIFF_GIT_LINE),
            ("`---` source marker", _SOURCE_LINE),
            ("`+++` target marker", _TARGET_LINE),
        )
        if not pattern.search(diff)
    ]
    if missing:
        raise StructuralValidationFailure(
            f"Invalid unified diff: missing {', '.join(missing)}."
        )


def missing_required_files(diff: str, required_files: Sequence[str]) -> list[str]:
    """Return required paths without a matching ``diff --git a/<p> b/<p>`` header."""
    headers = {line.strip() for line in diff.splitlines() if line.startswith("diff --git ")}
    return [path for path in required_files if f"diff --git a/{path} b/{path}" not in headers]


def ensure_required_files(diff: str, required_files: Sequence[str]) -> None:
    missing = missing_required_files(diff, required_files)
    if missing:
        listing = "\n- ".join(missing)
        raise StructuralValidationFailure(
            f"Diff missing required files:\n- {listing}\n"
            "Regenerate diff including ALL required files exactly at these paths.",
            missing_paths=missing,
        )


class DescriptionTranslator:
    """Translate the change description with a separate generation call."""

    def __init__(self, client: LLMClient, language: str, *, model: str | None = None) -> None:
        self._client = client
        self.language = language
        self._model = model

    def translate(self, text: str) -> str:
        request = GenerationRequest(
            prompt=text,
            system=render_translation_instructions(self.language),
            model=self._model,
            max_tokens=TRANSLATION_MAX_TOKENS,
        )
        try:
            translated = self._client.generate(request).rstrip()
        except ExternalServiceFailure as error:
            LOGGER.warning("Description translation failed, keeping original text: %s", error)
            return text
        return translated or text


class PatchExtractor:
    """Select, validate and persist the patch contained in generation output."""

    def __init__(
        self,
        repo: GitRepository,
        artifacts: ArtifactPaths,
        *,
        strategy: SelectionStrategy | None = None,
        translator: DescriptionTranslator | None = None,
    ) -> None:
        self.repo = repo
        self.artifacts = artifacts
        self.strategy = strategy or LongestDiffFirstDescription()
        self.translator = translator

    def select(self, raw_output: str) -> CandidatePatch:
        diff = self.strategy.pick_diff(_collect(raw_output, DIFF_TAGS))
        description = self.strategy.pick_description(_collect(raw_output, DESCRIPTION_TAGS))
        if not diff:
            raise StructuralValidationFailure(
                f"No diff block found. See {self.artifacts.last_output}"
            )
        if not description:
            raise StructuralValidationFailure(
                f"No md PR body block found. See {self.artifacts.last_output}"
            )
        return CandidatePatch(diff=diff, description=description, raw_output=raw_output)

    def validate(self, candidate: CandidatePatch, required_files: Sequence[str] = ()) -> None:
        validate_unified_diff(candidate.diff)
        ensure_required_files(candidate.diff, required_files)

    def check_applicable(self, candidate: CandidatePatch) -> None:
        result = self.repo.apply_check(candidate.diff + "\n")
        if result.returncode != 0:
            message = result.stderr.strip() or result.stdout.strip() or "unknown error"
            raise ApplyFailure(
                f"Generated patch is not applicable: {message}",
                exit_code=result.returncode,
            )

    def persist(self, candidate: CandidatePatch) -> None:
        self.artifacts.write(self.artifacts.patch, candidate.diff + "\n")
        self.artifacts.write(self.artifacts.description, candidate.description + "\n")
        translated = candidate.description
        if self.translator is not None:
            translated = self.translator.translate(candidate.description)
        self.artifacts.write(self.artifacts.translated_description, translated + "\n")

    def process(self, raw_output: str, required_files: Sequence[str] = ()) -> CandidatePatch:
        """Run every acceptance check and persist the accepted candidate."""
        try:
            candidate = self.select(raw_output)
            self.validate(candidate, required_files)
            self.check_applicable(candidate)
        except (StructuralValidationFailure, ApplyFailure) as error:
            emit_event("patch_rejected", reason=str(error), error_type=type(error).__name__)
            raise
        self.persist(candidate)
        emit_event(
            "patch_accepted",
            patch_path=self.artifacts.patch,
            patch_bytes=len(candidate.diff.encode("utf-8")),
            description_chars=len(candidate.description),
        )
        return candidate


__all__ = [
    "CandidatePatch",
    "DescriptionTranslator",
    "LongestDiffFirstDescription",
    "PatchExtractor",
    "SelectionStrategy",
    "ensure_required_files",
    "extract_fenced_blocks",
    "missing_required_files",
    "validate_unified_diff",
]
