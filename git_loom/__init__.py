"""
git-loom - Parallel git worktrees with AI-assisted rebase recovery
"""

from .__version__ import __version__
from .services.git import WorktreeRegistry
from .services.merge_service import MergeOrchestrator
from .services.swarm_service import SwarmCoordinator
from .services.metadata_service import MetadataStore

__all__ = [
    "MergeOrchestrator",
    "MetadataStore",
    "SwarmCoordinator",
    "WorktreeRegistry",
    "__version__",
]
