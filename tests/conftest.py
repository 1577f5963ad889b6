"""Shared fixtures for the autotest test suite."""

from __future__ import annotations

import os
import stat
import textwrap
from pathlib import Path
from typing import Any

import pytest

from autotest.core.db import (
    Assignment,
    Grouping,
    Membership,
    Store,
    Submission,
    TestScript,
    Token,
    User,
)
from autotest.core.models import Role
from autotest.settings import Settings

PASSING_REPORT = """<testrun>
  <test_script>
    <script_name>{name}</script_name>
    <test><name>t1</name><marks_earned>5</marks_earned><status>pass</status></test>
  </test_script>
</testrun>
"""


# ---------------------------------------------------------------------------
# Factory functions
# ---------------------------------------------------------------------------


def make_assignment(store: Store, **overrides: Any) -> Assignment:
    defaults: dict[str, Any] = {
        "short_identifier": "A1",
        "repository_folder": "A1",
        "testing_enabled": True,
        "unlimited_tokens": False,
        "tokens_per_day": 3,
    }
    defaults.update(overrides)
    return store.add(Assignment(**defaults))


def make_script(store: Store, assignment: Assignment, name: str, **overrides: Any) -> TestScript:
    defaults: dict[str, Any] = {
        "assignment_id": assignment.id,
        "script_name": name,
        "seq_num": 0,
        "run_on_submission": False,
        "run_on_request": True,
        "halts_testing": False,
    }
    defaults.update(overrides)
    return store.add(TestScript(**defaults))


def make_grouping(store: Store, assignment: Assignment, repo_name: str = "group_0001",
                  tokens: int | None = 0) -> Grouping:
    grouping = store.add(Grouping(assignment_id=assignment.id, group_name=repo_name, repo_name=repo_name))
    if tokens is not None:
        store.add(Token(grouping_id=grouping.id, tokens=tokens))
    return grouping


def make_user(store: Store, name: str, role: Role = Role.STUDENT,
              grouping: Grouping | None = None, accepted: bool = True) -> User:
    user = store.add(User(user_name=name, role=role))
    if grouping is not None:
        store.add(Membership(grouping_id=grouping.id, user_id=user.id, accepted=accepted))
    return user


def write_harness(path: Path, body: str) -> Path:
    """Write an executable /bin/sh harness script."""
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text("#!/bin/sh\n" + textwrap.dedent(body), encoding="utf-8")
    path.chmod(path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    return path


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def store() -> Store:
    return Store("sqlite://")


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    harness = write_harness(
        tmp_path / "harness" / "run_tests.sh",
        """\
        echo "$@" > args.txt
        cat <<'XML'
        <testrun><test_script><script_name>first.rb</script_name>
        <test><marks_earned>2</marks_earned><status>pass</status></test>
        </test_script></testrun>
        XML
        """,
    )
    return Settings(
        tests_repository=tmp_path / "tests_repo",
        submissions_dir=tmp_path / "submissions",
        run_dir=tmp_path / "run",
        harness_path=harness,
        harness_timeout_s=30,
        db_url="sqlite://",
        poll_interval_s=0.01,
        limits={},
    )


@pytest.fixture
def course(store: Store, settings: Settings) -> dict[str, Any]:
    """An assignment with two scripts, test files, a submission and a student."""
    assignment = make_assignment(store)
    second = make_script(store, assignment, "second.rb", seq_num=2)
    first = make_script(store, assignment, "first.rb", seq_num=1, run_on_submission=True)
    grouping = make_grouping(store, assignment, tokens=0)
    student = make_user(store, "student1", grouping=grouping)
    store.add(Submission(grouping_id=grouping.id, revision_number=7))

    test_dir = settings.tests_repository / assignment.short_identifier
    test_dir.mkdir(parents=True)
    (test_dir / "first.rb").write_text("# first\n")
    (test_dir / "second.rb").write_text("# second\n")

    src = settings.submissions_dir / grouping.repo_name / assignment.repository_folder
    src.mkdir(parents=True)
    (src / "solution.rb").write_text("puts 1\n")

    return {
        "assignment": assignment,
        "grouping": grouping,
        "student": student,
        "scripts": [second, first],
        "test_dir": test_dir,
        "src": src,
    }


@pytest.fixture(autouse=True)
def _no_conf_files(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep load_settings away from any conf/ of the working directory."""
    monkeypatch.setenv("AUTOTEST_CONF", os.fspath(tmp_path / "missing.yaml"))
