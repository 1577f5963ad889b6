"""
Turns the harness XML report into a single grading verdict.

Expected shape::

    <testrun>
      <test_script>
        <script_name>...</script_name>
        <test><marks_earned>N</marks_earned><status>pass|fail</status>...</test>
        ...
      </test_script>
      ...
    </testrun>
"""
from __future__ import annotations
import re
import xml.etree.ElementTree as ET
from typing import Any, Dict, List, Optional, Union

from ..core.models import CompletionStatus, InterpretedResult

Node = Union[str, Dict[str, Any], List[Any]]

_LEADING_INT = re.compile(r"\s*([+-]?\d+)")


class ResultParseError(ValueError):
    pass


def _to_tree(elem: ET.Element) -> Node:
    # a repeated tag becomes a list, a single one stays a bare value
    children = list(elem)
    if not children:
        return (elem.text or "").strip()
    data: Dict[str, Any] = {}
    for child in children:
        value = _to_tree(child)
        if child.tag not in data:
            data[child.tag] = value
        elif isinstance(data[child.tag], list):
            data[child.tag].append(value)
        else:
            data[child.tag] = [data[child.tag], value]
    return data


def parse_report(raw_output: str) -> Dict[str, Any]:
    try:
        root = ET.fromstring(raw_output.strip())
    except ET.ParseError as e:
        raise ResultParseError(f"harness output is not valid XML: {e}") from e
    return {root.tag: _to_tree(root)}


def as_list(node: Any) -> List[Any]:
    if node is None:
        return []
    if isinstance(node, list):
        return node
    return [node]


def _as_dict(node: Any) -> Dict[str, Any]:
    return node if isinstance(node, dict) else {}


def to_marks(value: Any) -> int:
    m = _LEADING_INT.match(value) if isinstance(value, str) else None
    return int(m.group(1)) if m else 0


def interpret(raw_output: str) -> Optional[InterpretedResult]:
    """Aggregate every test of every script into one result.

    Returns None when the report has no ``test_script`` at all. The result is
    named after the first script; marks and status cover the whole run.
    """
    tree = parse_report(raw_output)
    testrun = _as_dict(tree.get("testrun"))
    scripts = [_as_dict(s) for s in as_list(testrun.get("test_script"))]
    if not scripts:
        return None

    marks = 0
    status = CompletionStatus.PASS
    for script in scripts:
        for test in as_list(script.get("test")):
            test = _as_dict(test)
            marks += to_marks(test.get("marks_earned"))
            if test.get("status") != CompletionStatus.PASS.value:
                status = CompletionStatus.FAIL

    names = [str(s.get("script_name") or "") for s in scripts]
    return InterpretedResult(
        script_name=names[0],
        marks_earned=max(marks, 0),
        completion_status=status,
        script_names=names,
    )
