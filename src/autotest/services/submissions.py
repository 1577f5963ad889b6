from __future__ import annotations
import shutil
from pathlib import Path
from typing import Optional, Protocol

from ..core.db import Grouping, Store


class SubmissionRepository(Protocol):
    def export(self, grouping: Grouping, destination: Path) -> None: ...

    def latest_revision(self, grouping: Grouping) -> Optional[int]: ...


class DirectorySubmissionRepository:
    """Group repositories kept as plain directories under ``root/<repo_name>``."""

    def __init__(self, root: Path, store: Store):
        self.root = root
        self.store = store

    def export(self, grouping: Grouping, destination: Path) -> None:
        source = self.root / grouping.repo_name
        destination.parent.mkdir(parents=True, exist_ok=True)
        if source.is_dir():
            shutil.copytree(source, destination)
        else:
            # an empty repository still exports as an empty tree
            destination.mkdir()

    def latest_revision(self, grouping: Grouping) -> Optional[int]:
        submission = self.store.latest_submission(grouping.id)
        return submission.revision_number if submission else None
