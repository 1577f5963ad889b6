from __future__ import annotations
import contextlib
import os
import signal
import subprocess
import time
from typing import List, Optional, Sequence

import structlog

from ..core.db import TestScript
from ..core.models import Limits, RawExecutionOutcome, SandboxHandle
from ..services.storage import TestRepository
from .rlimits import apply_rlimits

log = structlog.get_logger(__name__)

_KILL_GRACE_S = 5


def build_args(scripts: Sequence[TestScript]) -> List[str]:
    """``name1 halts1 name2 halts2 ...``, parsed positionally by the harness.

    Each name is its own argv element, so whitespace in it needs no escaping.
    """
    args: List[str] = []
    for script in scripts:
        args.append(script.script_name)
        args.append("true" if script.halts_testing else "false")
    return args


def _kill_group(proc: subprocess.Popen) -> None:
    # the harness runs in its own session, so its children go down with it
    with contextlib.suppress(OSError, ProcessLookupError):
        os.killpg(proc.pid, signal.SIGTERM)
    try:
        proc.wait(timeout=_KILL_GRACE_S)
    except subprocess.TimeoutExpired:
        with contextlib.suppress(OSError, ProcessLookupError):
            os.killpg(proc.pid, signal.SIGKILL)


class HarnessRunner:
    def __init__(self, tests: TestRepository, interpreter: Optional[str] = None,
                 timeout_s: Optional[int] = None, limits: Optional[Limits] = None):
        self.tests = tests
        self.interpreter = interpreter
        self.timeout_s = timeout_s
        self.limits = limits or Limits()

    def command(self, sandbox: SandboxHandle, scripts: Sequence[TestScript]) -> List[str]:
        harness = os.path.join(".", sandbox.harness_name)
        base = [self.interpreter, sandbox.harness_name] if self.interpreter else [harness]
        return base + build_args(scripts)

    def run(self, sandbox: SandboxHandle, scripts: Sequence[TestScript]) -> RawExecutionOutcome:
        """Run the harness inside the sandbox and wait for it to exit."""
        cmd = self.command(sandbox, scripts)
        limits = self.limits

        def _preexec():
            apply_rlimits(limits)

        start = time.time()
        try:
            proc = subprocess.Popen(
                cmd,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
                errors="replace",
                cwd=str(sandbox.run_dir),
                start_new_session=True,
                preexec_fn=_preexec,
            )
        except OSError as e:
            log.error("harness_launch_failed", cmd=cmd, error=str(e))
            return RawExecutionOutcome(stdout="", stderr=str(e), succeeded=False)

        timed_out = False
        try:
            out, err = proc.communicate(timeout=self.timeout_s)
        except subprocess.TimeoutExpired:
            timed_out = True
            _kill_group(proc)
            out, err = proc.communicate()
            err = (err or "") + f"\n[timeout] harness exceeded {self.timeout_s}s"

        dur = time.time() - start
        rc = proc.returncode
        if timed_out or rc != 0:
            return RawExecutionOutcome(stdout=out or "", stderr=err or "", succeeded=False,
                                       rc=rc, timed_out=timed_out, duration_s=dur)

        archive = self.tests.archive_run(out, err)
        log.info("harness_finished", run_dir=str(sandbox.run_dir), duration_s=round(dur, 3),
                 archive=str(archive))
        return RawExecutionOutcome(stdout=out, stderr=err, succeeded=True, rc=rc,
                                   duration_s=dur, archive_dir=archive)
