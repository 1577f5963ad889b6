from __future__ import annotations
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Optional


class ErrorKind(str, Enum):
    PERMISSION_DENIED = "PermissionDenied"
    RESOURCE_UNAVAILABLE = "ResourceUnavailable"
    PROVISION_FAILED = "ProvisionFailed"
    EXECUTION_FAILED = "ExecutionFailed"
    MISSING_QUOTA_ENTRY = "MissingQuotaEntry"


class DenyReason(str, Enum):
    NOT_A_GROUP_MEMBER = "NotAGroupMember"
    QUOTA_EXHAUSTED = "QuotaExhausted"
    TESTING_DISABLED = "TestingDisabled"


class UnavailableReason(str, Enum):
    TEST_FILES_UNAVAILABLE = "TestFilesUnavailable"
    SOURCE_FILES_UNAVAILABLE = "SourceFilesUnavailable"


class FailureReason(str, Enum):
    NON_ZERO_EXIT = "NonZeroExit"
    TIMEOUT = "Timeout"
    LAUNCH_ERROR = "LaunchError"


MESSAGES = {
    DenyReason.NOT_A_GROUP_MEMBER: "You do not belong to this group, so you cannot run its tests.",
    DenyReason.QUOTA_EXHAUSTED: "You have no test tokens left for today. Tokens are replenished tomorrow.",
    DenyReason.TESTING_DISABLED: "Automated testing is not enabled for this assignment.",
    UnavailableReason.TEST_FILES_UNAVAILABLE: "Test files are not available for this assignment.",
    UnavailableReason.SOURCE_FILES_UNAVAILABLE: "No submitted source files were found for this group.",
}

GENERIC_RUN_FAILURE = "test run failed"


@dataclass
class RunFailure:
    kind: ErrorKind
    reason: Optional[str] = None
    message: str = GENERIC_RUN_FAILURE
    diagnostics: Dict[str, str] = field(default_factory=dict)

    @classmethod
    def denied(cls, reason: DenyReason) -> "RunFailure":
        return cls(ErrorKind.PERMISSION_DENIED, reason.value, MESSAGES[reason])

    @classmethod
    def unavailable(cls, reason: UnavailableReason, **diagnostics: str) -> "RunFailure":
        return cls(ErrorKind.RESOURCE_UNAVAILABLE, reason.value, MESSAGES[reason], dict(diagnostics))


class MissingQuotaEntryError(RuntimeError):
    """A grouping of a token-limited assignment has no quota entry.

    Entries are created when testing is enabled; an operator has to fix this.
    """
    kind = ErrorKind.MISSING_QUOTA_ENTRY

    def __init__(self, grouping_id: int):
        super().__init__(f"grouping {grouping_id} has no test token entry")
        self.grouping_id = grouping_id


class NotFoundError(LookupError):
    pass


class DuplicateScriptError(ValueError):
    pass
