from __future__ import annotations

from patchgate.utils.slug import sanitize_branch_name


def test_branch_names_are_lowercased_and_restricted() -> None:
    assert sanitize_branch_name("Feat/AI Normalize Input!!") == "feat/ai-normalize-input"
    assert sanitize_branch_name("fix//double---dash") == "fix/double-dash"


def test_empty_branch_name_uses_fallback() -> None:
    assert sanitize_branch_name("  ") == "feat/ai-run"
    assert sanitize_branch_name(None, fallback="feat/ai-123") == "feat/ai-123"


def test_long_branch_names_are_abbreviated_with_digest() -> None:
    name = sanitize_branch_name("feat/" + "x" * 200, max_length=40)

    assert len(name) <= 40
    assert name.startswith("feat/xxx")
