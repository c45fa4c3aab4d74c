from enum import Enum
from typing import Optional
from datetime import datetime, timezone
from sqlalchemy import DateTime
from sqlmodel import SQLModel, Field, UniqueConstraint


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SubmissionStatus(str, Enum):
    QUEUED = "Queued"
    PROCESSING = "Processing"
    ACCEPTED = "Accepted"
    WRONG_ANSWER = "WrongAnswer"
    ERRORED = "Errored"

    @property
    def is_final(self) -> bool:
        return self in FINAL_STATUSES


FINAL_STATUSES = frozenset(
    {SubmissionStatus.ACCEPTED, SubmissionStatus.WRONG_ANSWER, SubmissionStatus.ERRORED}
)


class SubmissionKind(str, Enum):
    RUN = "run"  # sample prefix of the corpus
    SUBMIT = "submit"  # full corpus


class Outcome(str, Enum):
    PENDING = "Pending"
    PASSED = "Passed"
    FAILED = "Failed"


class Problem(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    slug: str = Field(index=True, unique=True)
    title: str


class ProblemBoilerplate(SQLModel, table=True):
    __table_args__ = (UniqueConstraint("problem_id", "language_id"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    problem_id: int = Field(foreign_key="problem.id", index=True)
    language_id: int
    code: str  # stub shown to the user, replaced by their code
    full_code: str  # complete program containing the stub


class Submission(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: str = Field(index=True)
    problem_id: int = Field(foreign_key="problem.id", index=True)
    language_id: int
    source_code: str
    kind: SubmissionKind = Field(default=SubmissionKind.SUBMIT)
    status: SubmissionStatus = Field(default=SubmissionStatus.QUEUED, index=True)
    created_at: datetime = Field(default_factory=utcnow, sa_type=DateTime(timezone=True))
    finalized_at: Optional[datetime] = Field(default=None, sa_type=DateTime(timezone=True))


class TestCaseResult(SQLModel, table=True):
    __tablename__ = "test_case_result"

    id: Optional[int] = Field(default=None, primary_key=True)
    submission_id: int = Field(foreign_key="submission.id", index=True)
    position: int = 0
    outcome: Outcome = Field(default=Outcome.PENDING)
    judge_status_id: Optional[int] = None
    judge_status_text: Optional[str] = None
    stdout: Optional[str] = None
    stderr: Optional[str] = None
    compile_output: Optional[str] = None
    message: Optional[str] = None
    time: Optional[float] = None
    memory: Optional[int] = None
    token: Optional[str] = None
    updated_at: datetime = Field(default_factory=utcnow, sa_type=DateTime(timezone=True))
