"""CLI commands for generating, validating and publishing model-written patches."""

from __future__ import annotations

import logging
import shlex
import subprocess
import time
from pathlib import Path
from typing import NoReturn, Optional

import typer

from .config import Settings, load_settings
from .errors import ConfigurationError, PatchgateError
from .models import AnthropicClient, LLMClient
from .orchestrator import GenerationSettings, RetryOrchestrator, RunResult, Stage
from .tools.artifacts import ArtifactPaths
from .tools.extractor import (
    DIFF_TAGS,
    CandidatePatch,
    DescriptionTranslator,
    PatchExtractor,
    ensure_required_files,
    extract_fenced_blocks,
    validate_unified_diff,
)
from .tools.gates import GateRunner
from .tools.host import GitHubCliPublisher
from .tools.task import TaskSpec
from .tools.vcs import GitError, GitRepository
from .transaction import TransactionManager, TransactionMode, TransactionResult
from .utils.slug import sanitize_branch_name

APP_HELP = "Generate a patch with an LLM, gate it on a throwaway branch and open a pull request."
DEFAULT_RUN_BRANCH = "feat/ai-run"
DEFAULT_RUN_TITLE = "chore: apply ai patch"
DEFAULT_APPLY_TITLE = "chore: ai change"
LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"

app = typer.Typer(help=APP_HELP)


def _configure_logging(level: str) -> None:
    numeric = logging.getLevelName(level.upper())
    if not isinstance(numeric, int):
        raise typer.BadParameter(f"Unknown log level: {level}")
    logging.basicConfig(level=numeric, format=LOG_FORMAT)


def _fail(error: PatchgateError) -> NoReturn:
    typer.echo(f"Error: {error}", err=True)
    raise typer.Exit(code=error.exit_code)


def _open_repository(repo: Path) -> GitRepository:
    try:
        return GitRepository.discover(repo)
    except GitError as error:
        typer.echo(f"Failed to open repository at {repo}: {error}", err=True)
        raise typer.Exit(code=1)


def _load_settings(repository: GitRepository, config: Optional[Path]) -> Settings:
    try:
        return load_settings(repository.root, config)
    except ConfigurationError as error:
        _fail(error)


def _transaction_manager(repository: GitRepository, settings: Settings) -> TransactionManager:
    artifacts = ArtifactPaths.under(repository.root, settings.artifacts_dir)
    return TransactionManager(
        repository,
        artifacts,
        GateRunner(settings.gates),
        publisher=GitHubCliPublisher(),
        remote=settings.remote,
    )


def _build_client(settings: Settings) -> LLMClient:
    generation = settings.generation
    try:
        return AnthropicClient(api_key=generation.require_api_key(), model=generation.model)
    except ConfigurationError as error:
        _fail(error)
    except ValueError as error:
        typer.echo(f"Failed to initialise Anthropic client: {error}", err=True)
        raise typer.Exit(code=1)


def load_bundle(settings: Settings, bundle_path: Path) -> str:
    """Run the configured bundle command, then read the prompt bundle."""
    if settings.bundle_command:
        typer.echo(f"Building prompt bundle: {settings.bundle_command}")
        process = subprocess.run(  # noqa: S603  # command is sourced from config
            shlex.split(settings.bundle_command),
            cwd=settings.repo_root,
            check=False,
        )
        if process.returncode != 0:
            raise ConfigurationError(
                f"Bundle command failed: {settings.bundle_command}",
                exit_code=process.returncode,
            )
    if not bundle_path.exists():
        raise ConfigurationError(f"Prompt bundle not found: {bundle_path}")
    return bundle_path.read_text(encoding="utf-8")


def _render_stage(attempt: int, stage: Stage) -> None:
    if stage in (Stage.SUCCEEDED, Stage.FAILED):
        typer.echo(f"Attempt {attempt}: {stage.value}")
    else:
        typer.echo(f"Attempt {attempt}: {stage.value}...")


def _render_transaction(result: TransactionResult) -> None:
    typer.echo(result.gate_report.format_summary())
    if result.mode is TransactionMode.DRY_RUN:
        typer.echo(f"Dry run passed on {result.context.working_branch}; working copy restored.")
        return
    sha = (result.commit_sha or "")[:7]
    typer.echo(f"Committed {sha} on {result.context.working_branch} and pushed.")
    if result.change_request_url:
        typer.echo(f"Pull request: {result.change_request_url}")


def _render_run(result: RunResult) -> None:
    typer.echo(f"Succeeded after {len(result.attempts)} attempt(s).")
    if result.published is not None:
        _render_transaction(result.published)
    elif result.dry_run is not None:
        _render_transaction(result.dry_run)


@app.command()
def run(
    branch: str = typer.Argument(DEFAULT_RUN_BRANCH, help="Working branch to create for the change."),
    title: str = typer.Argument(DEFAULT_RUN_TITLE, help="Commit and pull request title."),
    dry_run: bool = typer.Option(False, "--dry-run", help="Stop after the gated dry run; never publish."),
    repo: Path = typer.Option(Path("."), "--repo", help="Path inside the target git repository."),
    config: Optional[Path] = typer.Option(None, "--config", "-c", help="Path to patchgate.yaml."),
    task: Optional[Path] = typer.Option(None, "--task", help="Task document (overrides paths.task)."),
    bundle: Optional[Path] = typer.Option(None, "--bundle", help="Prompt bundle (overrides paths.bundle)."),
    max_attempts: Optional[int] = typer.Option(None, "--max-attempts", min=1, help="Retry budget."),
    log_level: str = typer.Option("WARNING", "--log-level", help="Python logging level."),
) -> None:
    """Generate, validate and dry-run a patch, then publish it."""
    _configure_logging(log_level)
    repository = _open_repository(repo)
    settings = _load_settings(repository, config)
    branch_name = sanitize_branch_name(branch, fallback=DEFAULT_RUN_BRANCH)
    client = _build_client(settings)

    try:
        task_spec = TaskSpec.from_file(task or settings.task_path)
        bundle_text = load_bundle(settings, bundle or settings.bundle_path)
    except PatchgateError as error:
        _fail(error)

    artifacts = ArtifactPaths.under(repository.root, settings.artifacts_dir)
    translator = None
    if settings.generation.translate_language:
        translator = DescriptionTranslator(
            client,
            settings.generation.translate_language,
            model=settings.generation.translate_model,
        )

    orchestrator = RetryOrchestrator(
        client=client,
        extractor=PatchExtractor(repository, artifacts, translator=translator),
        transactions=_transaction_manager(repository, settings),
        artifacts=artifacts,
        generation=GenerationSettings(
            model=settings.generation.model,
            max_tokens=settings.generation.max_output_tokens,
            temperature=settings.generation.temperature,
        ),
        max_attempts=max_attempts or settings.max_attempts,
        gate_commands=[gate.display() for gate in settings.gates],
        on_stage=_render_stage,
    )

    if task_spec.required_files:
        typer.echo("Required files:")
        for path in task_spec.required_files:
            typer.echo(f"- {path}")

    try:
        result = orchestrator.run(
            bundle=bundle_text,
            task=task_spec,
            branch=branch_name,
            title=title,
            dry_run_only=dry_run,
        )
    except PatchgateError as error:
        typer.echo(f"Artifacts kept in {artifacts.root}", err=True)
        _fail(error)

    _render_run(result)


@app.command()
def apply(
    branch: Optional[str] = typer.Argument(None, help="Working branch (default: feat/ai-<unix time>)."),
    title: str = typer.Argument(DEFAULT_APPLY_TITLE, help="Commit and pull request title."),
    dry_run: bool = typer.Option(False, "--dry-run", help="Apply and gate, then roll back."),
    repo: Path = typer.Option(Path("."), "--repo", help="Path inside the target git repository."),
    config: Optional[Path] = typer.Option(None, "--config", "-c", help="Path to patchgate.yaml."),
    body_file: Optional[Path] = typer.Option(None, "--body-file", help="Pull request body file."),
    log_level: str = typer.Option("WARNING", "--log-level", help="Python logging level."),
) -> None:
    """Apply an existing patch.diff, run the gates and publish or roll back."""
    _configure_logging(log_level)
    repository = _open_repository(repo)
    settings = _load_settings(repository, config)
    fallback = f"feat/ai-{int(time.time())}"
    branch_name = sanitize_branch_name(branch, fallback=fallback)

    body: Optional[str] = None
    chosen_body = body_file or settings.body_file
    if chosen_body is not None and chosen_body.exists():
        body = chosen_body.read_text(encoding="utf-8")

    manager = _transaction_manager(repository, settings)
    mode = TransactionMode.DRY_RUN if dry_run else TransactionMode.PUBLISH
    try:
        result = manager.run(branch_name, title, mode, body=body)
    except PatchgateError as error:
        _fail(error)

    _render_transaction(result)


@app.command()
def check(
    source: Optional[Path] = typer.Argument(
        None,
        help="Raw generation output or diff file (default: the last generation output).",
    ),
    repo: Path = typer.Option(Path("."), "--repo", help="Path inside the target git repository."),
    config: Optional[Path] = typer.Option(None, "--config", "-c", help="Path to patchgate.yaml."),
    task: Optional[Path] = typer.Option(None, "--task", help="Task document listing required files."),
    apply_check: bool = typer.Option(
        True,
        "--apply-check/--no-apply-check",
        help="Also run git apply --check against the working copy.",
    ),
) -> None:
    """Validate generation output or a diff without touching the working copy."""
    repository = _open_repository(repo)
    settings = _load_settings(repository, config)
    artifacts = ArtifactPaths.under(repository.root, settings.artifacts_dir)
    path = source or artifacts.last_output
    if not path.exists():
        _fail(ConfigurationError(f"Nothing to check: {path} not found."))

    text = path.read_text(encoding="utf-8")
    required: tuple[str, ...] = ()
    task_path = task or settings.task_path
    if task is not None or task_path.exists():
        try:
            required = TaskSpec.from_file(task_path).required_files
        except ConfigurationError as error:
            _fail(error)

    extractor = PatchExtractor(repository, artifacts)
    try:
        if any(extract_fenced_blocks(text, tag) for tag in DIFF_TAGS):
            candidate = extractor.select(text)
            extractor.validate(candidate, required)
            diff = candidate.diff
        else:
            diff = text.rstrip()
            validate_unified_diff(diff)
            ensure_required_files(diff, required)
        if apply_check:
            extractor.check_applicable(CandidatePatch(diff=diff, description=""))
    except PatchgateError as error:
        _fail(error)

    typer.echo(f"OK: {path} contains a valid patch.")


if __name__ == "__main__":
    app()
