from __future__ import annotations
from functools import lru_cache
from typing import List, Optional

from fastapi import Depends, FastAPI, Header, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from .core.errors import ErrorKind, MissingQuotaEntryError, NotFoundError
from .core.models import TriggerKind
from .services.test_run_service import TestRunService
from .settings import load_settings

app = FastAPI(title="Automated Test Runs API")
app.add_middleware(
    CORSMiddleware,
    allow_origins=load_settings().cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@lru_cache(maxsize=1)
def get_service() -> TestRunService:
    return TestRunService()


# --------- Schemas ---------
class RunReq(BaseModel):
    trigger: TriggerKind = TriggerKind.REQUEST


class RunRes(BaseModel):
    job_id: int


class JobStatusRes(BaseModel):
    id: int
    grouping_id: int
    trigger: str
    status: str
    reason: Optional[str] = None
    created_at: str
    started_at: Optional[str] = None
    finished_at: Optional[str] = None


class TokensRes(BaseModel):
    grouping_id: int
    unlimited: bool
    tokens: Optional[int] = None


class TestResultRes(BaseModel):
    id: int
    name: str
    marks_earned: int
    completion_status: str
    repo_revision: Optional[int] = None
    submission_id: Optional[int] = None
    created_at: str


_STATUS_BY_KIND = {
    ErrorKind.PERMISSION_DENIED: 403,
    ErrorKind.RESOURCE_UNAVAILABLE: 409,
}


@app.exception_handler(NotFoundError)
def not_found(_request, exc: NotFoundError):
    return JSONResponse(status_code=404, content={"detail": str(exc)})


@app.exception_handler(MissingQuotaEntryError)
def missing_quota(_request, exc: MissingQuotaEntryError):
    # operator-fixable configuration defect, not the requester's fault
    return JSONResponse(
        status_code=500,
        content={"detail": "Test tokens are not configured for this group. Contact your instructor.",
                 "kind": exc.kind.value},
    )


# --------- Endpoints ---------

@app.get("/health")
def health():
    return {"ok": True}


@app.post("/groupings/{grouping_id}/test_runs", response_model=RunRes, status_code=202)
def request_test_run(grouping_id: int, req: RunReq, x_user_id: Optional[int] = Header(None),
                     svc: TestRunService = Depends(get_service)):
    outcome = svc.request_run(x_user_id, grouping_id, req.trigger)
    if not outcome.accepted:
        failure = outcome.failure
        raise HTTPException(
            status_code=_STATUS_BY_KIND.get(failure.kind, 500),
            detail={"kind": failure.kind.value, "reason": failure.reason, "message": failure.message},
        )
    return RunRes(job_id=outcome.job_id)


@app.get("/jobs/{job_id}", response_model=JobStatusRes)
def get_job(job_id: int, svc: TestRunService = Depends(get_service)):
    return JobStatusRes(**svc.get_job(job_id))


@app.get("/groupings/{grouping_id}/tokens", response_model=TokensRes)
def get_tokens(grouping_id: int, svc: TestRunService = Depends(get_service)):
    tokens = svc.get_tokens(grouping_id)
    return TokensRes(grouping_id=grouping_id, unlimited=tokens is None, tokens=tokens)


@app.get("/groupings/{grouping_id}/test_results", response_model=List[TestResultRes])
def get_test_results(grouping_id: int, svc: TestRunService = Depends(get_service)):
    return [
        TestResultRes(
            id=r.id,
            name=r.name,
            marks_earned=r.marks_earned,
            completion_status=r.completion_status.value,
            repo_revision=r.repo_revision,
            submission_id=r.submission_id,
            created_at=r.created_at.isoformat(),
        )
        for r in svc.get_results(grouping_id)
    ]
