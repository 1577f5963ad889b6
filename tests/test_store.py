"""Tests for Store helpers used when configuring assignments."""

from __future__ import annotations

import pytest

from autotest.core.db import Store, Submission, TestScript
from autotest.core.errors import DuplicateScriptError, NotFoundError
from conftest import make_assignment, make_grouping


def test_duplicate_script_name_is_rejected(store: Store) -> None:
    assignment = make_assignment(store)
    store.register_test_script(TestScript(assignment_id=assignment.id, script_name="a.rb", seq_num=1))

    with pytest.raises(DuplicateScriptError):
        store.register_test_script(TestScript(assignment_id=assignment.id, script_name="a.rb", seq_num=2))


def test_same_name_in_another_assignment_is_fine(store: Store) -> None:
    a1 = make_assignment(store)
    a2 = make_assignment(store, short_identifier="A2", repository_folder="A2")
    store.register_test_script(TestScript(assignment_id=a1.id, script_name="a.rb"))
    store.register_test_script(TestScript(assignment_id=a2.id, script_name="a.rb"))
    assert [s.script_name for s in store.test_scripts(a2.id)] == ["a.rb"]


def test_test_scripts_come_back_in_insertion_order(store: Store) -> None:
    assignment = make_assignment(store)
    for name in ("z.rb", "a.rb", "m.rb"):
        store.register_test_script(TestScript(assignment_id=assignment.id, script_name=name))
    assert [s.script_name for s in store.test_scripts(assignment.id)] == ["z.rb", "a.rb", "m.rb"]


def test_ensure_token_is_idempotent(store: Store) -> None:
    grouping = make_grouping(store, make_assignment(store), tokens=None)
    first = store.ensure_token(grouping.id)
    second = store.ensure_token(grouping.id)
    assert first.id == second.id
    assert first.tokens == 0


def test_latest_submission(store: Store) -> None:
    grouping = make_grouping(store, make_assignment(store))
    assert store.latest_submission(grouping.id) is None
    store.add(Submission(grouping_id=grouping.id, revision_number=1))
    store.add(Submission(grouping_id=grouping.id, revision_number=2))
    assert store.latest_submission(grouping.id).revision_number == 2


def test_unknown_ids_raise_not_found(store: Store) -> None:
    with pytest.raises(NotFoundError):
        store.get_grouping(42)
