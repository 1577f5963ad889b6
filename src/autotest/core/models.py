from __future__ import annotations
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Optional, TYPE_CHECKING

if TYPE_CHECKING:
    from .db import Assignment, Grouping, User


class Role(str, Enum):
    ADMIN = "admin"
    TA = "ta"
    STUDENT = "student"


class TriggerKind(str, Enum):
    COLLECTION = "collection"
    SUBMISSION = "submission"
    REQUEST = "request"


class CompletionStatus(str, Enum):
    PASS = "pass"
    FAIL = "fail"


class RunState(str, Enum):
    REQUESTED = "Requested"
    PERMISSION_CHECKED = "PermissionChecked"
    ENQUEUED = "Enqueued"
    PROVISIONING = "Provisioning"
    EXECUTING = "Executing"
    INTERPRETING = "Interpreting"
    PERSISTED = "Persisted"
    DENIED = "Denied"
    PROVISION_FAILED = "ProvisionFailed"
    EXECUTION_FAILED = "ExecutionFailed"


class JobStatus(str, Enum):
    QUEUED = "QUEUED"
    RUNNING = "RUNNING"
    FINISHED = "FINISHED"
    FAILED = "FAILED"


@dataclass
class Limits:
    cpu_seconds: Optional[int] = None
    memory_bytes: Optional[int] = None
    nofile: Optional[int] = None

    @classmethod
    def from_mapping(cls, raw: dict) -> "Limits":
        def _int(key: str) -> Optional[int]:
            value = raw.get(key)
            return int(value) if value is not None else None

        return cls(
            cpu_seconds=_int("cpu_seconds"),
            memory_bytes=_int("memory_bytes"),
            nofile=_int("nofile"),
        )


@dataclass
class RunContext:
    """Everything a single test run needs, resolved once and passed along.

    ``requester`` is None on the worker side: permission was already checked
    when the run was requested.
    """
    grouping: "Grouping"
    assignment: "Assignment"
    requester: Optional["User"] = None

    @property
    def repo_name(self) -> str:
        return self.grouping.repo_name


@dataclass
class SandboxHandle:
    run_dir: Path         # directory the harness runs in
    harness_name: str     # file name of the harness inside run_dir
    src_dir: Path         # exported submission folder that was copied in
    test_dir: Path        # assignment test assets that were copied in


@dataclass
class RawExecutionOutcome:
    stdout: str
    stderr: str
    succeeded: bool
    rc: Optional[int] = None
    timed_out: bool = False
    duration_s: float = 0.0
    archive_dir: Optional[Path] = None


@dataclass
class InterpretedResult:
    script_name: str
    marks_earned: int
    completion_status: CompletionStatus
    script_names: list[str] = field(default_factory=list)
