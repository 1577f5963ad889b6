from __future__ import annotations
import resource

from ..core.models import Limits


def apply_rlimits(limits: Limits) -> None:
    """
    Process-level limits for the harness: CPU time, address space, open files.
    Unset limits are left alone; limits the OS refuses keep their default.
    """
    for rlimit, value in (
        (resource.RLIMIT_CPU, limits.cpu_seconds),
        (resource.RLIMIT_AS, limits.memory_bytes),
        (resource.RLIMIT_NOFILE, limits.nofile),
    ):
        if value is None:
            continue
        try:
            resource.setrlimit(rlimit, (value, value))
        except (ValueError, OSError):
            pass
