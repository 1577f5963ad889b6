"""Tests for exporting submissions and assembling the sandbox run directory."""

from __future__ import annotations

import shutil
import threading
import time
from pathlib import Path
from typing import Any

import pytest

from autotest.core.db import Store
from autotest.core.errors import ErrorKind, RunFailure, UnavailableReason
from autotest.core.models import RunContext, SandboxHandle
from autotest.services.provisioner import SandboxProvisioner
from autotest.services.storage import TestRepository
from autotest.services.submissions import DirectorySubmissionRepository
from autotest.settings import Settings


@pytest.fixture
def provisioner(store: Store, settings: Settings) -> SandboxProvisioner:
    return SandboxProvisioner(
        TestRepository(settings.tests_repository),
        DirectorySubmissionRepository(settings.submissions_dir, store),
        settings.harness_path,
        settings.run_dir,
    )


@pytest.fixture
def ctx(course: dict[str, Any]) -> RunContext:
    return RunContext(grouping=course["grouping"], assignment=course["assignment"])


class TestPrepare:
    def test_available_files_pass(self, provisioner, ctx, course, settings) -> None:
        assert provisioner.prepare(ctx, course["scripts"]) is None
        exported = settings.tests_repository / "group_0001" / "A1" / "solution.rb"
        assert exported.read_text() == "puts 1\n"

    def test_stale_export_is_replaced(self, provisioner, ctx, course, settings) -> None:
        stale = settings.tests_repository / "group_0001" / "A1" / "old.rb"
        stale.parent.mkdir(parents=True)
        stale.write_text("stale")

        assert provisioner.prepare(ctx, course["scripts"]) is None
        assert not stale.exists()

    def test_creates_test_repository_dirs(self, provisioner, ctx, course, settings) -> None:
        shutil.rmtree(settings.tests_repository)
        failure = provisioner.prepare(ctx, course["scripts"])
        # recreated empty; only its existence is checked
        assert (settings.tests_repository / "A1").is_dir()
        assert failure is None

    def test_empty_submission_folder(self, provisioner, ctx, course) -> None:
        for f in course["src"].iterdir():
            f.unlink()
        failure = provisioner.prepare(ctx, course["scripts"])
        assert failure.kind is ErrorKind.RESOURCE_UNAVAILABLE
        assert failure.reason == UnavailableReason.SOURCE_FILES_UNAVAILABLE.value

    def test_missing_submission_repository(self, provisioner, ctx, course, settings) -> None:
        shutil.rmtree(settings.submissions_dir)
        failure = provisioner.prepare(ctx, course["scripts"])
        assert failure.reason == UnavailableReason.SOURCE_FILES_UNAVAILABLE.value

    def test_no_scripts_configured(self, provisioner, ctx) -> None:
        failure = provisioner.prepare(ctx, [])
        assert failure.reason == UnavailableReason.TEST_FILES_UNAVAILABLE.value


class TestProvision:
    def test_run_dir_contains_submission_tests_and_harness(self, provisioner, ctx, course, settings) -> None:
        stale = settings.run_dir / "leftover.txt"
        stale.parent.mkdir(parents=True)
        stale.write_text("from a previous run")

        with provisioner.locked():
            handle = provisioner.provision(ctx, course["scripts"])

        assert isinstance(handle, SandboxHandle)
        names = sorted(p.name for p in handle.run_dir.iterdir())
        assert names == ["first.rb", "run_tests.sh", "second.rb", "solution.rb"]
        assert handle.harness_name == "run_tests.sh"

    def test_failed_copy_reports_step_and_stderr(self, provisioner, ctx, course, monkeypatch) -> None:
        real_copytree = shutil.copytree

        def copytree(src, dst, *args, **kwargs):
            if Path(src) == course["test_dir"]:
                raise OSError(f"cannot copy {src}: Permission denied")
            return real_copytree(src, dst, *args, **kwargs)

        monkeypatch.setattr(shutil, "copytree", copytree)
        result = provisioner.provision(ctx, course["scripts"])

        assert isinstance(result, RunFailure)
        assert result.kind is ErrorKind.PROVISION_FAILED
        assert result.reason == "copy_test_files"
        assert "Permission denied" in result.diagnostics["stderr"]
        assert result.diagnostics["run_dir"] == str(provisioner.run_dir)

    def test_missing_harness_fails(self, provisioner, ctx, course, settings) -> None:
        settings.harness_path.unlink()
        result = provisioner.provision(ctx, course["scripts"])
        assert isinstance(result, RunFailure)
        assert result.reason == "copy_harness"

    def test_sources_gone_at_provision_time_is_provision_failure(self, provisioner, ctx, course) -> None:
        shutil.rmtree(course["src"])
        result = provisioner.provision(ctx, course["scripts"])
        assert result.kind is ErrorKind.PROVISION_FAILED
        assert result.reason == UnavailableReason.SOURCE_FILES_UNAVAILABLE.value


def test_sandbox_lock_serializes_runs(provisioner) -> None:
    events: list[str] = []

    def occupy(tag: str) -> None:
        with provisioner.locked():
            events.append(f"{tag}-in")
            time.sleep(0.05)
            events.append(f"{tag}-out")

    threads = [threading.Thread(target=occupy, args=(t,)) for t in ("a", "b", "c")]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert len(events) == 6
    for i in range(0, 6, 2):
        assert events[i].endswith("-in")
        assert events[i + 1] == events[i].replace("-in", "-out")
