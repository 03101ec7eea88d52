"""Metadata store for loom records.

Each worktree owns exactly one JSON file under ``~/.config/git-loom/looms``,
named by slugifying the worktree's absolute path. Files are always
rewritten whole, via a temp file and an atomic rename.
"""
import json
import os
import re
import uuid
from dataclasses import replace
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, TYPE_CHECKING

from git_loom.exceptions import MetadataWriteError
from git_loom.logging_config import get_logger
from git_loom.models.loom import LoomMetadata, LoomState, validate_transition

if TYPE_CHECKING:
    from git_loom.models.worktree import Worktree
    from git_loom.services.git.worktrees import WorktreeRegistry

logger = get_logger(__name__)

DEFAULT_LOOMS_DIR = Path.home() / ".config" / "git-loom" / "looms"


def deterministic_session_id(worktree_path: str) -> str:
    """Stable session id for a worktree, the same on every run."""
    return str(uuid.uuid5(uuid.NAMESPACE_URL, f"git-loom:{os.path.abspath(worktree_path)}"))


class MetadataStore:
    """Reads and writes per-worktree loom metadata."""

    def __init__(self, looms_dir: Optional[Path] = None):
        self.looms_dir = Path(looms_dir) if looms_dir else DEFAULT_LOOMS_DIR

    @staticmethod
    def slugify_path(worktree_path: str) -> str:
        """Convert a worktree path to its metadata file name.

        ``/Users/jane/dev/repo`` becomes ``___Users___jane___dev___repo.json``.
        """
        slug = re.sub(r"[/\\]+$", "", worktree_path)
        slug = re.sub(r"[/\\]", "___", slug)
        slug = re.sub(r"[^a-zA-Z0-9_-]", "-", slug)
        return f"{slug}.json"

    def _file_path(self, worktree_path: str) -> Path:
        return self.looms_dir / self.slugify_path(worktree_path)

    def exists(self, worktree_path: str) -> bool:
        return self._file_path(worktree_path).exists()

    def write_metadata(self, worktree_path: str, metadata: LoomMetadata) -> None:
        """Persist ``metadata`` for ``worktree_path``, replacing any existing record.

        Raises:
            MetadataWriteError: If the record cannot be written
        """
        if metadata.created_at is None:
            metadata.created_at = datetime.now(timezone.utc).isoformat()
        self._write(worktree_path, metadata.to_dict())
        logger.debug(f"Wrote metadata for {worktree_path}")

    def _write(self, worktree_path: str, data: Dict[str, Any]) -> None:
        file_path = self._file_path(worktree_path)
        temp_file = file_path.with_suffix(".tmp")
        try:
            self.looms_dir.mkdir(parents=True, exist_ok=True)
            with open(temp_file, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2)
                f.flush()
            temp_file.replace(file_path)
        except (OSError, TypeError, ValueError) as e:
            raise MetadataWriteError(worktree_path, str(e)) from e
        finally:
            if temp_file.exists():
                try:
                    temp_file.unlink()
                except OSError:
                    logger.debug(f"Could not remove temp file {temp_file}")

    def read_metadata(self, worktree_path: str) -> Optional[LoomMetadata]:
        """Load the record for ``worktree_path``.

        Returns:
            The record, or None if there is none or it cannot be parsed
        """
        file_path = self._file_path(worktree_path)
        if not file_path.exists():
            return None
        try:
            with open(file_path, "r", encoding="utf-8") as f:
                data = json.load(f)
            if not isinstance(data, dict) or not data.get("description"):
                logger.warning(f"Ignoring malformed metadata at {file_path}")
                return None
            return LoomMetadata.from_dict(data)
        except (OSError, json.JSONDecodeError, KeyError, ValueError) as e:
            logger.warning(f"Could not read metadata for {worktree_path}: {e}")
            return None

    def update_metadata(self, worktree_path: str, **changes) -> LoomMetadata:
        """Apply field changes to an existing record and rewrite it.

        A ``state`` change is checked against the transition table first.

        Raises:
            MetadataWriteError: If there is no record or it cannot be written
            InvalidStateTransitionError: If the state change is not allowed
        """
        current = self.read_metadata(worktree_path)
        if current is None:
            raise MetadataWriteError(worktree_path, "no metadata record to update")

        if "state" in changes and changes["state"] is not None:
            validate_transition(current.state, changes["state"])

        updated = replace(current, **changes)
        self._write(worktree_path, updated.to_dict())
        logger.debug(f"Updated metadata for {worktree_path}: {', '.join(changes)}")
        return updated

    def transition_state(self, worktree_path: str, state: LoomState) -> LoomMetadata:
        """Move a loom to ``state``."""
        updated = self.update_metadata(worktree_path, state=state)
        logger.info(f"Loom at {worktree_path} is now {state.value}")
        return updated

    def delete_metadata(self, worktree_path: str) -> None:
        """Delete the record for ``worktree_path``. Missing records are fine."""
        file_path = self._file_path(worktree_path)
        try:
            file_path.unlink()
            logger.debug(f"Deleted metadata for {worktree_path}")
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning(f"Could not delete metadata for {worktree_path}: {e}")

    def list_metadata(self) -> List[LoomMetadata]:
        """All readable records in the store."""
        if not self.looms_dir.exists():
            return []
        records = []
        for file_path in sorted(self.looms_dir.glob("*.json")):
            try:
                with open(file_path, "r", encoding="utf-8") as f:
                    data = json.load(f)
                records.append(LoomMetadata.from_dict(data))
            except (OSError, json.JSONDecodeError, KeyError, ValueError, TypeError) as e:
                logger.debug(f"Skipping unreadable metadata file {file_path}: {e}")
        return records

    def find_parent(
        self, metadata: LoomMetadata, registry: "WorktreeRegistry"
    ) -> Optional["Worktree"]:
        """Look up the live parent worktree of a child loom.

        The parent may have been removed after its children were created, so
        this returns None rather than raising when it is gone.
        """
        if metadata.parent_loom is None:
            return None
        parent = metadata.parent_loom
        worktree = registry.find_by_path(parent.worktree_path) if parent.worktree_path else None
        if worktree is None and parent.branch_name:
            worktree = registry.find_worktree_for_branch(parent.branch_name)
        if worktree is None:
            logger.debug(f"Parent loom {parent.identifier} ({parent.branch_name}) no longer exists")
        return worktree
