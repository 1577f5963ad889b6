from __future__ import annotations
from dataclasses import dataclass
from typing import Optional

import structlog

from ..core.db import Store, TestResult
from ..core.errors import DenyReason, ErrorKind, FailureReason, RunFailure
from ..core.models import RunContext, RunState, TriggerKind
from ..runner.harness_runner import HarnessRunner
from .interpreter import ResultParseError, interpret
from .job_queue import JobQueue
from .provisioner import SandboxProvisioner
from .quota import QuotaLedger, can_run_tests
from .selector import select_scripts
from .submissions import SubmissionRepository

log = structlog.get_logger(__name__)


@dataclass
class RunRequestOutcome:
    state: RunState
    job_id: Optional[int] = None
    failure: Optional[RunFailure] = None

    @property
    def accepted(self) -> bool:
        return self.state is RunState.ENQUEUED


@dataclass
class RunOutcome:
    state: RunState
    result: Optional[TestResult] = None
    failure: Optional[RunFailure] = None


class RunCoordinator:
    """
    Request side (caller's thread): context -> files -> permission -> enqueue.
    Worker side: context -> provision -> harness -> interpret -> persist.
    """

    def __init__(self, store: Store, ledger: QuotaLedger, queue: JobQueue,
                 provisioner: SandboxProvisioner, runner: HarnessRunner,
                 submissions: SubmissionRepository):
        self.store = store
        self.ledger = ledger
        self.queue = queue
        self.provisioner = provisioner
        self.runner = runner
        self.submissions = submissions

    def context(self, grouping_id: int, requester_id: Optional[int] = None) -> RunContext:
        grouping = self.store.get_grouping(grouping_id)
        assignment = self.store.get_assignment(grouping.assignment_id)
        return RunContext(grouping=grouping, assignment=assignment, requester=self.store.find_user(requester_id))

    # ---- request side ----

    def request_run(self, requester_id: Optional[int], grouping_id: int, trigger: TriggerKind) -> RunRequestOutcome:
        trigger = TriggerKind(trigger)
        ctx = self.context(grouping_id, requester_id)
        requester = ctx.requester
        bound = log.bind(grouping_id=grouping_id, requester_id=requester_id,
                         requester=requester.user_name if requester else None, trigger=trigger.value)
        bound.info("run_requested", state=RunState.REQUESTED.value)

        if not ctx.assignment.testing_enabled:
            failure = RunFailure.denied(DenyReason.TESTING_DISABLED)
            bound.info("run_denied", reason=failure.reason)
            return RunRequestOutcome(RunState.DENIED, failure=failure)

        # files first: a token is never spent on a run that cannot start
        failure = self.provisioner.prepare(ctx, self.store.test_scripts(ctx.assignment.id))
        if failure is not None:
            bound.warning("run_unavailable", reason=failure.reason, **failure.diagnostics)
            return RunRequestOutcome(RunState.DENIED, failure=failure)

        consumed = []

        def consume_quota():
            decision = self.ledger.check_and_consume(grouping_id, ctx.assignment)
            if decision.allowed:
                consumed.append(True)
            return decision

        decision = can_run_tests(
            requester.role if requester else None,
            requester is not None and self.store.is_member(requester.id, grouping_id),
            consume_quota,
        )
        if not decision.allowed:
            bound.info("run_denied", reason=decision.reason.value)
            return RunRequestOutcome(RunState.DENIED, failure=RunFailure.denied(decision.reason))

        try:
            job_id = self.queue.enqueue(grouping_id, trigger)
        except Exception:
            if consumed:
                self.ledger.refund(grouping_id, ctx.assignment)
            bound.exception("enqueue_failed")
            raise
        bound.info("run_enqueued", job_id=job_id)
        return RunRequestOutcome(RunState.ENQUEUED, job_id=job_id)

    # ---- worker side ----

    def _fail(self, ctx: RunContext, state: RunState, failure: RunFailure) -> RunOutcome:
        log.error(
            "provision_failed" if state is RunState.PROVISION_FAILED else "execution_failed",
            grouping_id=ctx.grouping.id,
            reason=failure.reason,
            **{**self.provisioner.diagnostics(ctx), **failure.diagnostics},
        )
        return RunOutcome(state, failure=failure)

    def execute_run(self, grouping_id: int, trigger: TriggerKind) -> RunOutcome:
        ctx = self.context(grouping_id)
        all_scripts = self.store.test_scripts(ctx.assignment.id)
        scripts = select_scripts(all_scripts, TriggerKind(trigger))

        with self.provisioner.locked():
            sandbox = self.provisioner.provision(ctx, all_scripts)
            if isinstance(sandbox, RunFailure):
                return self._fail(ctx, RunState.PROVISION_FAILED, sandbox)

            raw = self.runner.run(sandbox, scripts)

        if not raw.succeeded:
            reason = FailureReason.TIMEOUT if raw.timed_out else FailureReason.NON_ZERO_EXIT
            if raw.rc is None:
                reason = FailureReason.LAUNCH_ERROR
            return self._fail(ctx, RunState.EXECUTION_FAILED, RunFailure(
                ErrorKind.EXECUTION_FAILED, reason.value,
                diagnostics={"stderr": raw.stderr, "stdout": raw.stdout, "rc": str(raw.rc)},
            ))

        try:
            verdict = interpret(raw.stdout)
        except ResultParseError as e:
            return self._fail(ctx, RunState.EXECUTION_FAILED, RunFailure(
                ErrorKind.EXECUTION_FAILED, "InvalidOutput",
                diagnostics={"stderr": str(e), "stdout": raw.stdout},
            ))
        if verdict is None:
            log.info("run_without_results", grouping_id=grouping_id)
            return RunOutcome(RunState.PERSISTED)

        script = self.store.find_test_script(ctx.assignment.id, verdict.script_name)
        submission = self.store.latest_submission(grouping_id)
        record = self.store.create_test_result(TestResult(
            grouping_id=grouping_id,
            test_script_id=script.id if script else None,
            name=verdict.script_name,
            repo_revision=self.submissions.latest_revision(ctx.grouping),
            actual_output=raw.stdout,
            marks_earned=verdict.marks_earned,
            completion_status=verdict.completion_status,
            submission_id=submission.id if submission else None,
        ))
        log.info("test_result_created", grouping_id=grouping_id, test_result_id=record.id,
                 marks_earned=record.marks_earned, status=record.completion_status.value)
        return RunOutcome(RunState.PERSISTED, result=record)
