from __future__ import annotations
import contextlib
import fcntl
import os
import shutil
from pathlib import Path
from typing import Callable, Iterator, List, Optional, Sequence, Tuple, Union

import structlog

from ..core.db import TestScript
from ..core.errors import ErrorKind, RunFailure, UnavailableReason
from ..core.models import RunContext, SandboxHandle
from .storage import TestRepository
from .submissions import SubmissionRepository

log = structlog.get_logger(__name__)


@contextlib.contextmanager
def lock_file(path: Path) -> Iterator[None]:
    """Exclusive flock on ``path``; excludes other threads and processes alike."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd = os.open(path, os.O_CREAT | os.O_RDWR | os.O_CLOEXEC, 0o666)
    try:
        fcntl.flock(fd, fcntl.LOCK_EX)
        try:
            yield
        finally:
            fcntl.flock(fd, fcntl.LOCK_UN)
    finally:
        os.close(fd)


def _has_entries(directory: Path) -> bool:
    # scandir never yields "." and ".."
    return any(True for _ in os.scandir(directory))


class SandboxProvisioner:
    """Exports a grouping's submission and assembles the harness run directory.

    ``run_dir`` is one shared path, so every run must hold :meth:`locked`
    from provisioning until the harness has exited.
    """

    def __init__(self, tests: TestRepository, submissions: SubmissionRepository,
                 harness_path: Path, run_dir: Path):
        self.tests = tests
        self.submissions = submissions
        self.harness_path = harness_path
        self.run_dir = run_dir if run_dir.is_absolute() else run_dir.resolve()

    def locked(self):
        return lock_file(self.run_dir.with_name(self.run_dir.name + ".lock"))

    def _export_lock(self, ctx: RunContext):
        return lock_file(self.tests.root / f".{ctx.repo_name}.lock")

    def _paths(self, ctx: RunContext) -> Tuple[Path, Path, Path]:
        export_dir = self.tests.export_dir(ctx.grouping)
        return export_dir, export_dir / ctx.assignment.repository_folder, self.tests.test_dir(ctx.assignment)

    def diagnostics(self, ctx: RunContext) -> dict:
        _, src_dir, test_dir = self._paths(ctx)
        return {
            "src_dir": str(src_dir),
            "test_dir": str(test_dir),
            "harness": str(self.harness_path),
            "run_dir": str(self.run_dir),
        }

    # ---- export + availability ----

    def _export(self, ctx: RunContext) -> Optional[RunFailure]:
        export_dir, _, _ = self._paths(ctx)
        try:
            if export_dir.exists():
                shutil.rmtree(export_dir)
            self.submissions.export(ctx.grouping, export_dir)
        except OSError as e:
            return RunFailure(ErrorKind.PROVISION_FAILED, "export",
                              diagnostics={**self.diagnostics(ctx), "stderr": str(e)})
        return None

    def _check_available(self, ctx: RunContext, scripts: Sequence[TestScript]) -> Optional[RunFailure]:
        export_dir, src_dir, test_dir = self._paths(ctx)
        if not test_dir.is_dir():
            return RunFailure.unavailable(UnavailableReason.TEST_FILES_UNAVAILABLE, test_dir=str(test_dir))
        if not export_dir.is_dir() or not src_dir.is_dir() or not _has_entries(src_dir):
            return RunFailure.unavailable(UnavailableReason.SOURCE_FILES_UNAVAILABLE, src_dir=str(src_dir))
        if not scripts:
            return RunFailure.unavailable(UnavailableReason.TEST_FILES_UNAVAILABLE, test_dir=str(test_dir))
        return None

    def prepare(self, ctx: RunContext, scripts: Sequence[TestScript]) -> Optional[RunFailure]:
        """Fresh export of the submission, then check there is something to test.

        ``scripts`` are all scripts configured for the assignment.
        """
        self.tests.ensure(ctx.assignment)
        with self._export_lock(ctx):
            return self._export(ctx) or self._check_available(ctx, scripts)

    # ---- sandbox assembly ----

    def _steps(self, src_dir: Path, test_dir: Path) -> List[Tuple[str, Callable[[], object]]]:
        def clean():
            if self.run_dir.exists():
                shutil.rmtree(self.run_dir)
            self.run_dir.mkdir(parents=True)

        return [
            ("clean_run_dir", clean),
            ("copy_submission", lambda: shutil.copytree(src_dir, self.run_dir, dirs_exist_ok=True)),
            ("copy_test_files", lambda: shutil.copytree(test_dir, self.run_dir, dirs_exist_ok=True)),
            ("copy_harness", lambda: shutil.copy2(self.harness_path, self.run_dir / self.harness_path.name)),
        ]

    def provision(self, ctx: RunContext, scripts: Sequence[TestScript]) -> Union[SandboxHandle, RunFailure]:
        """Build the run directory. Callers hold :meth:`locked`.

        Unavailable sources or test files at this point are a provisioning
        failure: they were present when the run was requested.
        """
        self.tests.ensure(ctx.assignment)
        _, src_dir, test_dir = self._paths(ctx)

        with self._export_lock(ctx):
            failure = self._export(ctx) or self._check_available(ctx, scripts)
            if failure is not None:
                return RunFailure(ErrorKind.PROVISION_FAILED, failure.reason,
                                  diagnostics={**self.diagnostics(ctx), **failure.diagnostics})

            for step, action in self._steps(src_dir, test_dir):
                try:
                    action()
                except OSError as e:
                    return RunFailure(ErrorKind.PROVISION_FAILED, step,
                                      diagnostics={**self.diagnostics(ctx), "stderr": str(e)})

        return SandboxHandle(
            run_dir=self.run_dir,
            harness_name=self.harness_path.name,
            src_dir=src_dir,
            test_dir=test_dir,
        )
