from __future__ import annotations

from patchgate.prompts import (
    RETRY_RULES,
    render_attempt_input,
    render_feedback,
    render_instructions,
    render_translation_instructions,
)
from patchgate.tools.host import GitHubCliPublisher


def test_instructions_list_required_files_and_gates() -> None:
    text = render_instructions(
        required_files=["src/a.ts", "src/a.test.ts"],
        gate_commands=["pnpm test", "pnpm lint"],
    )

    assert "Required files:\n- src/a.ts\n- src/a.test.ts" in text
    assert "pnpm test, pnpm lint" in text
    assert RETRY_RULES not in text
    assert RETRY_RULES in render_instructions(extra_rules=RETRY_RULES)


def test_attempt_input_appends_feedback_only_when_present() -> None:
    first = render_attempt_input(bundle="B", task="T", attempt=1)
    second = render_attempt_input(bundle="B", task="T", attempt=2, feedback="previous")

    assert first == "# PROMPT_BUNDLE\nB\n\n# TASK\nT\n\n# ATTEMPT\n1"
    assert second.endswith("# PREVIOUS_INVALID_OUTPUT (for debugging)\nprevious")


def test_feedback_keeps_only_the_gate_log_tail() -> None:
    log = "\n".join(f"line {index}" for index in range(500))

    feedback = render_feedback(
        previous_output="```diff\n...\n```",
        gates_log=log,
        gates_label="DRY_RUN_FAILED_GATES_LOG_TAIL",
    )

    assert feedback.startswith("```diff")
    assert "# DRY_RUN_FAILED_GATES_LOG_TAIL\nline 300\n" in feedback
    assert "line 299\n" not in feedback
    assert "# FAILURE" not in feedback


def test_translation_instructions_name_the_language() -> None:
    assert "natural Korean" in render_translation_instructions("Korean")


def test_github_cli_command_uses_body_when_present() -> None:
    publisher = GitHubCliPublisher(executable="gh")

    assert publisher.command(branch="feat/x", title="t", body="") == [
        "gh", "pr", "create", "--head", "feat/x", "--title", "t", "--fill",
    ]
    assert publisher.command(branch="feat/x", title="t", body="hello")[-2:] == ["--body", "hello"]
