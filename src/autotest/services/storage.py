from __future__ import annotations
from pathlib import Path
from typing import Optional

from ..core.db import Assignment, Grouping
from ..core.utils import unix_timestamp


class TestRepository:
    """
    Filesystem layout of the automated tests repository:
      <root>/
        ├─ <assignment short id>/      (test scripts + support files)
        ├─ <group repo name>/          (exported submission, replaced every run)
        └─ test_runs/test_run_<unix>/
             ├─ output.txt
             └─ error.txt
    """
    __test__ = False

    def __init__(self, root: Path):
        self.root = root if root.is_absolute() else root.resolve()

    def test_dir(self, assignment: Assignment) -> Path:
        return self.root / assignment.short_identifier

    def export_dir(self, grouping: Grouping) -> Path:
        return self.root / grouping.repo_name

    def ensure(self, assignment: Assignment) -> Path:
        """Create the root and the assignment's test directory if missing."""
        test_dir = self.test_dir(assignment)
        test_dir.mkdir(parents=True, exist_ok=True)
        return test_dir

    def archive_run(self, stdout: str, stderr: str, timestamp: Optional[int] = None) -> Path:
        base = self.root / "test_runs"
        base.mkdir(parents=True, exist_ok=True)
        stem = f"test_run_{timestamp or unix_timestamp()}"
        p = base / stem
        n = 0
        while True:
            try:
                p.mkdir()
                break
            except FileExistsError:
                # two runs in the same second
                n += 1
                p = base / f"{stem}_{n}"
        (p / "output.txt").write_text(stdout or "", encoding="utf-8")
        (p / "error.txt").write_text(stderr or "", encoding="utf-8")
        return p
