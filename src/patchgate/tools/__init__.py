"""Tool integrations used by the patch pipeline."""

from .artifacts import ArtifactPaths
from .gates import GateCommand, GateReport, GateResult, GateRunner, gates_from_config
from .host import ChangeRequestPublisher, GitHubCliPublisher
from .task import TaskSpec, parse_required_files
from .vcs import GitError, GitRepository
from .extractor import (
    CandidatePatch,
    DescriptionTranslator,
    LongestDiffFirstDescription,
    PatchExtractor,
    SelectionStrategy,
)

__all__ = [
    "ArtifactPaths",
    "CandidatePatch",
    "ChangeRequestPublisher",
    "DescriptionTranslator",
    "GateCommand",
    "GateReport",
    "GateResult",
    "GateRunner",
    "GitError",
    "GitHubCliPublisher",
    "GitRepository",
    "LongestDiffFirstDescription",
    "PatchExtractor",
    "SelectionStrategy",
    "TaskSpec",
    "gates_from_config",
    "parse_required_files",
]
