"""Run configuration assembled from ``patchgate.yaml`` and the environment.

The YAML file describes the repository side of a run (artifact locations,
gate commands, retry budget, git remote); generation settings come from the
environment, optionally seeded from ``.env.local`` and ``.env``.
"""

from __future__ import annotations

import copy
import math
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

import yaml
from dotenv import load_dotenv

from patchgate.errors import ConfigurationError
from patchgate.models.anthropic import DEFAULT_MODEL
from patchgate.tools.artifacts import DEFAULT_ARTIFACT_DIR
from patchgate.tools.gates import GateCommand, gates_from_config

DEFAULT_CONFIG_NAME = "patchgate.yaml"
ENV_FILES: tuple[str, ...] = (".env.local", ".env")

DEFAULT_CONFIG_TEMPLATE: Dict[str, Any] = {
    "paths": {
        "artifacts": DEFAULT_ARTIFACT_DIR,
        "task": ".ai/TASK.md",
        "bundle": ".ai/PROMPT_BUNDLE.md",
    },
    "context": {
        "bundle_command": None,
    },
    "retry": {
        "max_attempts": 3,
    },
    "git": {
        "remote": "origin",
    },
    "translate": {
        "language": "Korean",
    },
    "gates": None,
}


@dataclass(frozen=True)
class GenerationConfig:
    """Generation service settings read from the environment."""

    api_key: Optional[str] = None
    model: str = DEFAULT_MODEL
    max_output_tokens: int = 2200
    temperature: Optional[float] = None
    translate_model: Optional[str] = None
    translate_language: Optional[str] = "Korean"

    @classmethod
    def from_env(cls, env: Mapping[str, str] | None = None, *, translate_language: Optional[str] = "Korean") -> "GenerationConfig":
        source = os.environ if env is None else env
        model = _read_string(source, "ANTHROPIC_MODEL", DEFAULT_MODEL) or DEFAULT_MODEL
        language = source.get("PATCHGATE_TRANSLATE_LANGUAGE", translate_language)
        return cls(
            api_key=_read_string(source, "ANTHROPIC_API_KEY", None),
            model=model,
            max_output_tokens=int(_read_number(source, "ANTHROPIC_MAX_OUTPUT_TOKENS", 2200)),
            temperature=_read_number(source, "ANTHROPIC_TEMPERATURE", None),
            translate_model=_read_string(source, "ANTHROPIC_TRANSLATE_MODEL", None),
            translate_language=(language or "").strip() or None,
        )

    def require_api_key(self) -> str:
        if not self.api_key:
            raise ConfigurationError("Missing env: ANTHROPIC_API_KEY")
        return self.api_key


@dataclass(frozen=True)
class Settings:
    """Everything a run needs, resolved against the repository root."""

    repo_root: Path
    artifacts_dir: Path
    task_path: Path
    bundle_path: Path
    bundle_command: Optional[str] = None
    max_attempts: int = 3
    remote: str = "origin"
    gates: List[GateCommand] = field(default_factory=list)
    generation: GenerationConfig = field(default_factory=GenerationConfig)
    body_file: Optional[Path] = None


def load_env_files(repo_root: Path) -> None:
    """Load ``.env.local`` then ``.env``; values already set are kept."""
    for name in ENV_FILES:
        candidate = repo_root / name
        if candidate.exists():
            load_dotenv(candidate, override=False)


def load_config(config_path: Path) -> Dict[str, Any]:
    """Load YAML configuration from disk merged over the defaults."""
    config = copy.deepcopy(DEFAULT_CONFIG_TEMPLATE)
    if not config_path.exists():
        return config

    try:
        with config_path.open("r", encoding="utf-8") as handle:
            data = yaml.safe_load(handle) or {}
    except yaml.YAMLError as error:
        raise ConfigurationError(f"Failed to parse config {config_path}: {error}") from error

    if not isinstance(data, dict):
        raise ConfigurationError("Configuration must be a mapping at the top level.")

    for key, value in data.items():
        if isinstance(value, Mapping) and isinstance(config.get(key), dict):
            config[key].update(value)
        else:
            config[key] = value
    return config


def load_settings(
    repo_root: Path,
    config_path: Path | None = None,
    *,
    env: Mapping[str, str] | None = None,
) -> Settings:
    """Resolve the run settings for ``repo_root``."""
    repo_root = repo_root.resolve()
    if env is None:
        load_env_files(repo_root)
    config = load_config(config_path or repo_root / DEFAULT_CONFIG_NAME)

    paths_cfg = config.get("paths") or {}
    context_cfg = config.get("context") or {}
    retry_cfg = config.get("retry") or {}
    git_cfg = config.get("git") or {}
    translate_cfg = config.get("translate") or {}

    max_attempts = retry_cfg.get("max_attempts", 3)
    if not isinstance(max_attempts, int) or max_attempts < 1:
        raise ConfigurationError(f"retry.max_attempts must be a positive integer, got: {max_attempts!r}")

    gates_raw = config.get("gates")
    if gates_raw is not None and not isinstance(gates_raw, list):
        raise ConfigurationError("gates must be a list of commands.")

    source = os.environ if env is None else env
    body_file = _read_string(source, "AI_PR_BODY_FILE", None)
    bundle_command = context_cfg.get("bundle_command")

    return Settings(
        repo_root=repo_root,
        artifacts_dir=_resolve(repo_root, paths_cfg.get("artifacts") or DEFAULT_ARTIFACT_DIR),
        task_path=_resolve(repo_root, paths_cfg.get("task") or ".ai/TASK.md"),
        bundle_path=_resolve(repo_root, paths_cfg.get("bundle") or ".ai/PROMPT_BUNDLE.md"),
        bundle_command=str(bundle_command).strip() if bundle_command else None,
        max_attempts=max_attempts,
        remote=str(git_cfg.get("remote") or "origin"),
        gates=gates_from_config(gates_raw),
        generation=GenerationConfig.from_env(source, translate_language=translate_cfg.get("language")),
        body_file=_resolve(repo_root, body_file) if body_file else None,
    )


def _resolve(repo_root: Path, value: str | Path) -> Path:
    candidate = Path(value)
    if not candidate.is_absolute():
        candidate = repo_root / candidate
    return candidate


def _read_string(env: Mapping[str, str], name: str, fallback: Optional[str]) -> Optional[str]:
    value = env.get(name)
    if value and str(value).strip():
        return str(value).strip()
    return fallback


def _read_number(env: Mapping[str, str], name: str, fallback: Optional[float]) -> Optional[float]:
    value = env.get(name)
    if not value:
        return fallback
    try:
        number = float(value)
    except ValueError:
        return fallback
    return number if math.isfinite(number) else fallback


__all__ = [
    "DEFAULT_CONFIG_NAME",
    "DEFAULT_CONFIG_TEMPLATE",
    "GenerationConfig",
    "Settings",
    "load_config",
    "load_env_files",
    "load_settings",
]
