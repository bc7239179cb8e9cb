from __future__ import annotations

from typing import Sequence

import pytest

from conftest import (
    LONG_DESCRIPTION,
    ScriptedClient,
    modify_app_diff,
    new_file_diff,
    render_output,
)
from patchgate.errors import ApplyFailure, StructuralValidationFailure
from patchgate.models.llm_client import LLMTransportError
from patchgate.tools.extractor import (
    DescriptionTranslator,
    LongestDiffFirstDescription,
    PatchExtractor,
    extract_fenced_blocks,
    missing_required_files,
    validate_unified_diff,
)

NORMALIZE_DIFF = new_file_diff(
    "src/domain/normalize_input.py",
    ["def normalize_input(value):", "    return value.strip()"],
)


def test_extract_fenced_blocks_returns_bodies_in_order() -> None:
    text = "```diff\nfirst\n```\nprose\n```diff\nsecond  \n```\n```md\nbody\n```"

    assert extract_fenced_blocks(text, "diff") == ["first", "second"]
    assert extract_fenced_blocks(text, "md") == ["body"]
    assert extract_fenced_blocks(text, "markdown") == []


def test_selection_prefers_longest_diff_and_first_long_description() -> None:
    strategy = LongestDiffFirstDescription()

    assert strategy.pick_diff(["short", "much longer diff", "mid"]) == "much longer diff"
    assert strategy.pick_description([LONG_DESCRIPTION, LONG_DESCRIPTION + "\nextra"]) == LONG_DESCRIPTION


def test_short_first_description_falls_back_to_longest() -> None:
    strategy = LongestDiffFirstDescription(min_description_chars=200)

    assert strategy.pick_description(["tiny", "a somewhat longer body", "mid body"]) == "a somewhat longer body"
    assert strategy.pick_description([]) is None


def test_header_only_diff_is_rejected_as_no_real_change() -> None:
    header_only = "\n".join(
        [
            "diff --git a/src/x.py b/src/x.py",
            "new file mode 100644",
            "index 0000000..e69de29",
        ]
    )

    with pytest.raises(StructuralValidationFailure) as excinfo:
        validate_unified_diff(header_only)

    assert "no real change" in str(excinfo.value)


def test_diff_without_file_markers_names_missing_markers() -> None:
    with pytest.raises(StructuralValidationFailure) as excinfo:
        validate_unified_diff("@@ -1 +1 @@\n-a\n+b")

    message = str(excinfo.value)
    assert "diff --git" in message
    assert "---" in message
    assert "+++" in message


def test_missing_required_files_lists_exactly_the_missing_paths() -> None:
    diff = NORMALIZE_DIFF + "\n" + modify_app_diff("return name")
    required = ["src/domain/normalize_input.py", "tests/test_normalize.py", "src/app.py", "docs/usage.md"]

    assert missing_required_files(diff, required) == ["tests/test_normalize.py", "docs/usage.md"]


def test_process_rejects_output_missing_required_file(sample_repo) -> None:
    extractor = PatchExtractor(sample_repo.repo, sample_repo.artifacts)
    raw = render_output(NORMALIZE_DIFF)

    with pytest.raises(StructuralValidationFailure) as excinfo:
        extractor.process(raw, ["src/domain/normalize_input.py", "tests/test_normalize.py"])

    assert excinfo.value.missing_paths == ("tests/test_normalize.py",)
    assert "tests/test_normalize.py" in str(excinfo.value)
    assert not sample_repo.artifacts.patch.exists()


def test_process_reports_missing_blocks(sample_repo) -> None:
    extractor = PatchExtractor(sample_repo.repo, sample_repo.artifacts)

    with pytest.raises(StructuralValidationFailure, match="No diff block"):
        extractor.process(render_output(None))
    with pytest.raises(StructuralValidationFailure, match="No md PR body block"):
        extractor.process(render_output(NORMALIZE_DIFF, description=None))


def test_process_accepts_markdown_alias_for_description(sample_repo) -> None:
    extractor = PatchExtractor(sample_repo.repo, sample_repo.artifacts)
    raw = f"```diff\n{NORMALIZE_DIFF}\n```\n\n```markdown\n{LONG_DESCRIPTION}\n```\n"

    candidate = extractor.process(raw)

    assert candidate.description == LONG_DESCRIPTION


def test_process_rejects_patch_that_does_not_apply(sample_repo) -> None:
    extractor = PatchExtractor(sample_repo.repo, sample_repo.artifacts)
    stale = "\n".join(
        [
            "diff --git a/src/app.py b/src/app.py",
            "--- a/src/app.py",
            "+++ b/src/app.py",
            "@@ -1,2 +1,2 @@",
            " def wave(name):",
            "-    return 'bye ' + name",
            "+    return 'ciao ' + name",
        ]
    )

    with pytest.raises(ApplyFailure) as excinfo:
        extractor.process(render_output(stale))

    assert excinfo.value.exit_code != 0
    assert excinfo.value.recoverable
    assert sample_repo.git("status", "--porcelain") == ""


def test_process_persists_artifacts_without_touching_working_copy(sample_repo) -> None:
    extractor = PatchExtractor(sample_repo.repo, sample_repo.artifacts)
    raw = render_output(NORMALIZE_DIFF)

    candidate = extractor.process(raw, ["src/domain/normalize_input.py"])

    artifacts = sample_repo.artifacts
    assert candidate.diff == NORMALIZE_DIFF
    assert candidate.raw_output == raw
    assert artifacts.patch.read_text(encoding="utf-8") == NORMALIZE_DIFF + "\n"
    assert artifacts.description.read_text(encoding="utf-8").strip() == LONG_DESCRIPTION
    assert artifacts.translated_description.read_text(encoding="utf-8").strip() == LONG_DESCRIPTION
    assert not (sample_repo.root / "src" / "domain").exists()


def test_translator_output_is_written_to_translated_description(sample_repo) -> None:
    client = ScriptedClient(["## 요약\n입력 정규화 헬퍼를 추가합니다.\n"])
    translator = DescriptionTranslator(client, "Korean")
    extractor = PatchExtractor(sample_repo.repo, sample_repo.artifacts, translator=translator)

    extractor.process(render_output(NORMALIZE_DIFF))

    artifacts = sample_repo.artifacts
    assert artifacts.translated_description.read_text(encoding="utf-8").startswith("## 요약")
    assert artifacts.description.read_text(encoding="utf-8").strip() == LONG_DESCRIPTION
    assert "Korean" in (client.requests[0].system or "")
    assert client.requests[0].prompt == LONG_DESCRIPTION


def test_translation_failure_keeps_original_description(sample_repo) -> None:
    client = ScriptedClient([LLMTransportError("Anthropic API error: 529 - overloaded", status=529)])
    extractor = PatchExtractor(
        sample_repo.repo,
        sample_repo.artifacts,
        translator=DescriptionTranslator(client, "Korean"),
    )

    extractor.process(render_output(NORMALIZE_DIFF))

    translated = sample_repo.artifacts.translated_description.read_text(encoding="utf-8")
    assert translated.strip() == LONG_DESCRIPTION


def test_custom_selection_strategy_replaces_heuristics(sample_repo) -> None:
    class FirstBlocks:
        def pick_diff(self, blocks: Sequence[str]) -> str | None:
            return blocks[0] if blocks else None

        def pick_description(self, blocks: Sequence[str]) -> str | None:
            return blocks[0] if blocks else None

    longer = NORMALIZE_DIFF + "\n" + modify_app_diff("return 'hi ' + name")
    raw = f"```diff\n{NORMALIZE_DIFF}\n```\n```diff\n{longer}\n```\n```md\nshort\n```\n"
    extractor = PatchExtractor(sample_repo.repo, sample_repo.artifacts, strategy=FirstBlocks())

    candidate = extractor.process(raw)

    assert candidate.diff == NORMALIZE_DIFF
    assert candidate.description == "short"
