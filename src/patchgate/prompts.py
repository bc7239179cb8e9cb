"""Instruction and feedback text shared by the generation attempts."""

from __future__ import annotations

from typing import Sequence

DIFF_TEMPLATE = "\n".join(
    [
        "Here is a minimal valid example of a NEW FILE diff. Follow this format exactly:",
        "```diff",
        "diff --git a/src/domain/normalizeInput.ts b/src/domain/normalizeInput.ts",
        "new file mode 100644",
        "index 0000000..1111111",
        "--- /dev/null",
        "+++ b/src/domain/normalizeInput.ts",
        "@@ -0,0 +1,3 @@",
        "+export function normalizeInput(input: string): string {",
        "+  return input.trim();",
        "+}",
        "```",
        "",
        "Important: Your diff must include `---`, `+++`, and at least one `@@` hunk with real lines.",
        "Do NOT output header-only diffs like index ...e69de29.",
    ]
)

BASE_RULES: tuple[str, ...] = (
    "You are an agentic coding system that must produce a single-PR sized change.",
    "Return EXACTLY two blocks and nothing else:",
    "1) One unified diff inside a single ```diff code block.",
    "2) One PR body inside a single ```md code block (Summary / How to test / Risk & rollback / Notes).",
    "Do not output any text outside the two fenced code blocks.",
    "Do not include Markdown headings outside the ```md block.",
    "",
    "Hard requirements for the diff:",
    "- Must be valid `git diff` unified patch format: include `diff --git`, `---`, `+++`, and `@@` hunks.",
    "- Do NOT output header-only diffs. Every changed file must include at least one @@ hunk with real content.",
    "- If creating a new file, use `--- /dev/null` and `+++ b/<path>` and include at least one @@ hunk.",
    "- Hunk headers must match the exact number of lines that follow.",
    "- Every hunk line must start with ' ', '+', '-', or '\\' (no whitespace-only lines).",
    "",
    "Constraints:",
    "- Keep changes minimal; no large refactors, no mass formatting.",
    "- Do not add dependencies unless required by the task.",
)

RETRY_RULES = " ".join(
    [
        "Your previous output was invalid or failed quality gates.",
        "Regenerate a correct unified diff with full headers and at least one @@ hunk per file.",
        "Do not output header-only diffs (e.g., index ...e69de29).",
        "Include ALL required files listed in the instructions.",
        "Fix issues reported in the gates log if provided.",
    ]
)

TRANSLATION_RULES = (
    "Translate the given GitHub pull request description into natural {language}.",
    "Keep the Markdown structure and headings as-is.",
    "Do not add new content. Do not remove content.",
    "Preserve code spans/backticks, command names, filenames, and paths exactly.",
    "If English technical terms are widely used (e.g., PR, lint, typecheck), you may keep them.",
    "Return ONLY the translated Markdown. No extra commentary.",
)

GATE_LOG_TAIL_LINES = 200


def render_instructions(
    *,
    required_files: Sequence[str] = (),
    gate_commands: Sequence[str] = (),
    extra_rules: str | None = None,
) -> str:
    """Build the system instructions for one generation attempt."""
    lines = list(BASE_RULES)
    if gate_commands:
        lines.append(f"- Changes must pass: {', '.join(gate_commands)}.")
    if required_files:
        lines.append("Required files:")
        lines.extend(f"- {path}" for path in required_files)
        lines.append("Your diff MUST include changes for every required file listed above.")
    lines.append(DIFF_TEMPLATE)
    if extra_rules:
        lines.append(extra_rules)
    return "\n".join(lines)


def render_attempt_input(
    *,
    bundle: str,
    task: str,
    attempt: int,
    feedback: str | None = None,
) -> str:
    """Build the user content: bundle, task, attempt number and prior failure."""
    parts = [
        "# PROMPT_BUNDLE\n",
        bundle,
        "\n\n# TASK\n",
        task,
        "\n\n# ATTEMPT\n",
        str(attempt),
    ]
    if feedback:
        parts.extend(["\n\n# PREVIOUS_INVALID_OUTPUT (for debugging)\n", feedback])
    return "".join(parts)


def render_translation_instructions(language: str) -> str:
    return "\n".join(rule.format(language=language) for rule in TRANSLATION_RULES)


def render_feedback(
    *,
    previous_output: str,
    error: str | None = None,
    gates_log: str = "",
    gates_label: str = "LAST_GATES_LOG_TAIL",
) -> str:
    """Combine the prior raw output with what went wrong into feedback text."""
    sections: list[str] = []
    if previous_output.strip():
        sections.append(previous_output.rstrip())
    if error:
        sections.append(f"# FAILURE\n{error.strip()}")
    if gates_log.strip():
        excerpt = "\n".join(gates_log.split("\n")[-GATE_LOG_TAIL_LINES:])
        sections.append(f"# {gates_label}\n{excerpt}")
    return "\n\n".join(sections) + "\n" if sections else ""


__all__ = [
    "BASE_RULES",
    "DIFF_TEMPLATE",
    "GATE_LOG_TAIL_LINES",
    "RETRY_RULES",
    "render_attempt_input",
    "render_feedback",
    "render_instructions",
    "render_translation_instructions",
]
