from __future__ import annotations
from datetime import timedelta
from typing import Optional, Protocol

from sqlalchemy import update
from sqlmodel import select

from ..core.db import RunJob, Store
from ..core.errors import NotFoundError
from ..core.models import JobStatus, TriggerKind
from ..core.utils import utcnow


class JobQueue(Protocol):
    def enqueue(self, grouping_id: int, trigger: TriggerKind) -> int: ...


class DbJobQueue:
    """Durable test-run queue kept in the ``runjob`` table.

    Delivery is at-least-once: a job whose worker died while it was RUNNING is
    handed out again after :meth:`requeue_stale`.
    """

    def __init__(self, store: Store):
        self.store = store

    def enqueue(self, grouping_id: int, trigger: TriggerKind) -> int:
        job = self.store.add(RunJob(grouping_id=grouping_id, trigger=TriggerKind(trigger)))
        return job.id

    def get(self, job_id: int) -> RunJob:
        with self.store.session() as s:
            job = s.get(RunJob, job_id)
        if job is None:
            raise NotFoundError(f"job_not_found:{job_id}")
        return job

    def claim_next(self) -> Optional[RunJob]:
        with self.store.session() as s:
            while True:
                job = s.exec(
                    select(RunJob).where(RunJob.status == JobStatus.QUEUED).order_by(RunJob.id)
                ).first()
                if job is None:
                    return None
                # another worker may have taken it between select and update
                claimed = s.execute(
                    update(RunJob)
                    .where(RunJob.id == job.id, RunJob.status == JobStatus.QUEUED)
                    .values(status=JobStatus.RUNNING, started_at=utcnow())
                ).rowcount
                s.commit()
                if claimed:
                    s.refresh(job)
                    return job

    def finish(self, job_id: int, status: JobStatus, reason: Optional[str] = None) -> None:
        with self.store.session() as s:
            s.execute(
                update(RunJob)
                .where(RunJob.id == job_id)
                .values(status=status, reason=reason, finished_at=utcnow())
            )
            s.commit()

    def requeue_stale(self, older_than: timedelta) -> int:
        cutoff = utcnow() - older_than
        with self.store.session() as s:
            count = s.execute(
                update(RunJob)
                .where(RunJob.status == JobStatus.RUNNING, RunJob.started_at < cutoff)
                .values(status=JobStatus.QUEUED, started_at=None)
            ).rowcount
            s.commit()
            return count
