from datetime import date, datetime
from typing import List, Optional

from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool
from sqlmodel import Field, Session, SQLModel, create_engine, select

from .errors import DuplicateScriptError, NotFoundError
from .models import CompletionStatus, JobStatus, Role, TriggerKind
from .utils import utcnow


class User(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    user_name: str = Field(index=True, unique=True)
    role: Role = Role.STUDENT


class Assignment(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    short_identifier: str = Field(index=True, unique=True)
    repository_folder: str
    testing_enabled: bool = False
    unlimited_tokens: bool = False
    tokens_per_day: int = 0


class TestScript(SQLModel, table=True):
    __test__ = False  # not a pytest class

    id: Optional[int] = Field(default=None, primary_key=True)
    assignment_id: int = Field(foreign_key="assignment.id", index=True)
    script_name: str
    seq_num: float = 0
    run_on_submission: bool = False
    run_on_request: bool = False
    halts_testing: bool = False


class Grouping(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    assignment_id: int = Field(foreign_key="assignment.id", index=True)
    group_name: str
    repo_name: str


class Membership(SQLModel, table=True):
    grouping_id: int = Field(foreign_key="grouping.id", primary_key=True)
    user_id: int = Field(foreign_key="user.id", primary_key=True)
    accepted: bool = True


class Submission(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    grouping_id: int = Field(foreign_key="grouping.id", index=True)
    revision_number: int = 0
    created_at: datetime = Field(default_factory=utcnow)


class Token(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    grouping_id: int = Field(foreign_key="grouping.id", unique=True)
    tokens: int = 0
    last_token_used_date: Optional[date] = None


class TestResult(SQLModel, table=True):
    __test__ = False

    id: Optional[int] = Field(default=None, primary_key=True)
    grouping_id: int = Field(foreign_key="grouping.id", index=True)
    test_script_id: Optional[int] = Field(default=None, foreign_key="testscript.id")
    name: str
    repo_revision: Optional[int] = None
    actual_output: str = ""
    marks_earned: int = 0
    completion_status: CompletionStatus
    submission_id: Optional[int] = Field(default=None, foreign_key="submission.id")
    created_at: datetime = Field(default_factory=utcnow)


class RunJob(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    grouping_id: int = Field(foreign_key="grouping.id", index=True)
    trigger: TriggerKind
    status: JobStatus = JobStatus.QUEUED
    created_at: datetime = Field(default_factory=utcnow)
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    reason: Optional[str] = None


class Store:
    """SQLModel-backed persistence for assignments, groupings, tokens and results."""

    def __init__(self, url: str = "sqlite:///./autotest.db"):
        kwargs = {}
        if url.startswith("sqlite"):
            kwargs["connect_args"] = {"check_same_thread": False}
            if url in ("sqlite://", "sqlite:///:memory:"):
                # one shared connection, otherwise every session gets an empty db
                kwargs["poolclass"] = StaticPool
        self.engine = create_engine(url, **kwargs)
        SQLModel.metadata.create_all(self.engine)
        self.SessionLocal = sessionmaker(bind=self.engine, class_=Session, expire_on_commit=False)

    def session(self) -> Session:
        return self.SessionLocal()

    def add(self, obj):
        with self.SessionLocal() as s:
            s.add(obj)
            s.commit()
            s.refresh(obj)
            return obj

    def _get(self, model, obj_id: int):
        with self.SessionLocal() as s:
            obj = s.get(model, obj_id)
        if obj is None:
            raise NotFoundError(f"{model.__name__.lower()}_not_found:{obj_id}")
        return obj

    def get_user(self, user_id: int) -> User:
        return self._get(User, user_id)

    def find_user(self, user_id: Optional[int]) -> Optional[User]:
        if user_id is None:
            return None
        with self.SessionLocal() as s:
            return s.get(User, user_id)

    def get_grouping(self, grouping_id: int) -> Grouping:
        return self._get(Grouping, grouping_id)

    def get_assignment(self, assignment_id: int) -> Assignment:
        return self._get(Assignment, assignment_id)

    def is_member(self, user_id: int, grouping_id: int) -> bool:
        with self.SessionLocal() as s:
            m = s.get(Membership, (grouping_id, user_id))
            return bool(m and m.accepted)

    def test_scripts(self, assignment_id: int) -> List[TestScript]:
        # insertion (id) order is the tie-breaker for equal seq_num
        with self.SessionLocal() as s:
            stmt = select(TestScript).where(TestScript.assignment_id == assignment_id).order_by(TestScript.id)
            return list(s.exec(stmt).all())

    def register_test_script(self, script: TestScript) -> TestScript:
        with self.SessionLocal() as s:
            stmt = select(TestScript).where(
                TestScript.assignment_id == script.assignment_id,
                TestScript.script_name == script.script_name,
            )
            if s.exec(stmt).first() is not None:
                raise DuplicateScriptError(f"duplicate test script file name: {script.script_name}")
            s.add(script)
            s.commit()
            s.refresh(script)
            return script

    def find_test_script(self, assignment_id: int, script_name: str) -> Optional[TestScript]:
        with self.SessionLocal() as s:
            stmt = select(TestScript).where(
                TestScript.assignment_id == assignment_id,
                TestScript.script_name == script_name,
            )
            return s.exec(stmt).first()

    def ensure_token(self, grouping_id: int) -> Token:
        with self.SessionLocal() as s:
            token = s.exec(select(Token).where(Token.grouping_id == grouping_id)).first()
            if token is None:
                token = Token(grouping_id=grouping_id)
                s.add(token)
                s.commit()
                s.refresh(token)
            return token

    def latest_submission(self, grouping_id: int) -> Optional[Submission]:
        with self.SessionLocal() as s:
            stmt = (
                select(Submission)
                .where(Submission.grouping_id == grouping_id)
                .order_by(Submission.created_at.desc(), Submission.id.desc())
            )
            return s.exec(stmt).first()

    def create_test_result(self, record: TestResult) -> TestResult:
        # append-only: records are never updated afterwards
        return self.add(record)

    def test_results(self, grouping_id: int) -> List[TestResult]:
        with self.SessionLocal() as s:
            stmt = select(TestResult).where(TestResult.grouping_id == grouping_id).order_by(TestResult.id)
            return list(s.exec(stmt).all())
