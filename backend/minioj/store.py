"""
Result Store.

Durable storage for submissions and their per-test-case results. Reads go
through SQLModel sessions; every state transition that can race (processing,
finalization, result application) is a single guarded UPDATE executed on the
engine, and the caller learns whether it won from the statement's rowcount.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence, Tuple

from sqlalchemy import or_, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncEngine
from sqlmodel import select

from .db import get_session
from .errors import NotFoundError, StorageConflictError, ValidationError
from .judge0 import DISPATCH_FAILED
from .models import (
    Outcome,
    Problem,
    ProblemBoilerplate,
    Submission,
    SubmissionKind,
    SubmissionStatus,
    TestCaseResult,
    utcnow,
)

logger = logging.getLogger(__name__)


class ApplyOutcome(str, Enum):
    APPLIED = "applied"
    IGNORED = "ignored"  # submission finalized, or a transient status after a terminal one


@dataclass
class SubmissionMeta:
    user_id: str
    problem_id: int
    language_id: int
    source_code: str
    kind: SubmissionKind = SubmissionKind.SUBMIT


@dataclass
class ResultUpdate:
    outcome: Outcome
    judge_status_id: Optional[int] = None
    judge_status_text: Optional[str] = None
    stdout: Optional[str] = None
    stderr: Optional[str] = None
    compile_output: Optional[str] = None
    message: Optional[str] = None
    time: Optional[float] = None
    memory: Optional[int] = None
    token: Optional[str] = None

    def values(self) -> Dict[str, Any]:
        if self.outcome is Outcome.PENDING:
            # transient judge states only carry the status
            return {
                "judge_status_id": self.judge_status_id,
                "judge_status_text": self.judge_status_text,
            }
        return {
            "outcome": self.outcome,
            "judge_status_id": self.judge_status_id,
            "judge_status_text": self.judge_status_text,
            "stdout": self.stdout,
            "stderr": self.stderr,
            "compile_output": self.compile_output,
            "message": self.message,
            "time": self.time,
            "memory": self.memory,
            "token": self.token,
        }


@dataclass
class SubmissionView:
    submission: Submission
    results: List[TestCaseResult] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.results)

    @property
    def finished_count(self) -> int:
        return sum(1 for r in self.results if r.outcome is not Outcome.PENDING)

    @property
    def passed_count(self) -> int:
        return sum(1 for r in self.results if r.outcome is Outcome.PASSED)

    @property
    def fully_reported(self) -> bool:
        return self.finished_count == self.total


def verdict_guards(submission_id: int, verdict: SubmissionStatus) -> List[Any]:
    """Conditions on the submission's result rows under which ``verdict`` holds."""
    rows = select(TestCaseResult.id).where(TestCaseResult.submission_id == submission_id)
    pending = rows.where(TestCaseResult.outcome == Outcome.PENDING).exists()
    not_passed = rows.where(TestCaseResult.outcome != Outcome.PASSED).exists()
    judged = rows.where(
        or_(
            TestCaseResult.judge_status_text.is_(None),
            TestCaseResult.judge_status_text != DISPATCH_FAILED,
        )
    ).exists()

    guards = [~pending]
    if verdict is SubmissionStatus.ACCEPTED:
        guards.append(~not_passed)
    elif verdict is SubmissionStatus.WRONG_ANSWER:
        guards += [not_passed, judged]
    else:
        guards += [not_passed, ~judged]
    return guards


class ResultStore:
    def __init__(self, engine: AsyncEngine):
        self.engine = engine

    # -- submissions -------------------------------------------------------

    async def create_submission(
        self, meta: SubmissionMeta, n_results: int, processing: bool = True
    ) -> Tuple[Submission, List[int]]:
        """Insert a submission and its Pending placeholders atomically.

        The row is written Queued; with ``processing`` it is moved to
        Processing before the same transaction commits, so no other reader
        ever sees it Queued.
        """
        async with get_session(self.engine) as session:
            submission = Submission(
                user_id=meta.user_id,
                problem_id=meta.problem_id,
                language_id=meta.language_id,
                source_code=meta.source_code,
                kind=meta.kind,
            )
            session.add(submission)
            await session.flush()
            results = [
                TestCaseResult(submission_id=submission.id, position=i)
                for i in range(n_results)
            ]
            session.add_all(results)
            if processing:
                await session.flush()
                submission.status = SubmissionStatus.PROCESSING
            await session.commit()
            return submission, [r.id for r in results]

    async def create_pending_result(self, submission_id: int, position: int = 0) -> int:
        async with get_session(self.engine) as session:
            if await session.get(Submission, submission_id) is None:
                raise NotFoundError(f"submission {submission_id} not found")
            result = TestCaseResult(submission_id=submission_id, position=position)
            session.add(result)
            await session.commit()
            return result.id

    async def get_submission(self, submission_id: int) -> SubmissionView:
        async with get_session(self.engine) as session:
            submission = await session.get(Submission, submission_id)
            if submission is None:
                raise NotFoundError(f"submission {submission_id} not found")
            q = await session.exec(
                select(TestCaseResult)
                .where(TestCaseResult.submission_id == submission_id)
                .order_by(TestCaseResult.position, TestCaseResult.id)
            )
            return SubmissionView(submission=submission, results=list(q.all()))

    async def _transition(
        self,
        submission_id: int,
        current: SubmissionStatus,
        target: SubmissionStatus,
        guards: Sequence[Any] = (),
        **extra: Any,
    ) -> None:
        stmt = (
            update(Submission)
            .where(Submission.id == submission_id, Submission.status == current, *guards)
            .values(status=target, **extra)
        )
        async with self.engine.begin() as conn:
            res = await conn.execute(stmt)
            if res.rowcount == 1:
                return
            found = await conn.execute(
                select(Submission.status).where(Submission.id == submission_id)
            )
            row = found.first()
        if row is None:
            raise NotFoundError(f"submission {submission_id} not found")
        if row[0] == current:
            raise StorageConflictError(
                f"submission {submission_id} results no longer support {target}"
            )
        raise StorageConflictError(
            f"submission {submission_id} is {row[0]}, expected {current}"
        )

    async def mark_processing(self, submission_id: int) -> bool:
        try:
            await self._transition(
                submission_id, SubmissionStatus.QUEUED, SubmissionStatus.PROCESSING
            )
        except StorageConflictError:
            return False
        return True

    async def finalize_if_processing(
        self, submission_id: int, final_status: SubmissionStatus
    ) -> bool:
        """Processing -> final_status as one conditional UPDATE.

        The same statement re-checks the result rows, so the verdict can only
        land if it still matches them: nothing Pending, and for Accepted
        nothing but Passed. Returns True only for the caller that performed
        the transition.
        """
        if not final_status.is_final:
            raise ValueError(f"{final_status} is not a final status")
        try:
            await self._transition(
                submission_id,
                SubmissionStatus.PROCESSING,
                final_status,
                guards=verdict_guards(submission_id, final_status),
                finalized_at=utcnow(),
            )
        except StorageConflictError as e:
            logger.debug("[Store] finalize lost: %s", e)
            return False
        return True

    async def list_stale_processing(self, older_than: datetime) -> List[int]:
        async with get_session(self.engine) as session:
            q = await session.exec(
                select(Submission.id).where(
                    Submission.status == SubmissionStatus.PROCESSING,
                    Submission.created_at < older_than,
                )
            )
            return list(q.all())

    # -- results -----------------------------------------------------------

    async def get_result(self, result_id: int) -> TestCaseResult:
        async with get_session(self.engine) as session:
            result = await session.get(TestCaseResult, result_id)
            if result is None:
                raise NotFoundError(f"test case result {result_id} not found")
            return result

    async def apply_result(self, result_id: int, change: ResultUpdate) -> ApplyOutcome:
        """Apply a judge outcome to one result row.

        The write only lands while the owning submission is Processing, and a
        transient (Pending) status never overwrites a terminal outcome.
        """
        processing = select(Submission.id).where(
            Submission.status == SubmissionStatus.PROCESSING
        )
        stmt = update(TestCaseResult).where(
            TestCaseResult.id == result_id,
            TestCaseResult.submission_id.in_(processing),
        )
        if change.outcome is Outcome.PENDING:
            stmt = stmt.where(TestCaseResult.outcome == Outcome.PENDING)
        stmt = stmt.values(updated_at=utcnow(), **change.values())

        async with self.engine.begin() as conn:
            res = await conn.execute(stmt)
            if res.rowcount == 1:
                return ApplyOutcome.APPLIED
            found = await conn.execute(
                select(TestCaseResult.id).where(TestCaseResult.id == result_id)
            )
            if found.first() is None:
                raise NotFoundError(f"test case result {result_id} not found")
        return ApplyOutcome.IGNORED

    async def count_pending(self, submission_id: int) -> int:
        async with get_session(self.engine) as session:
            q = await session.exec(
                select(TestCaseResult.id).where(
                    TestCaseResult.submission_id == submission_id,
                    TestCaseResult.outcome == Outcome.PENDING,
                )
            )
            return len(q.all())

    # -- problem catalogue ---------------------------------------------------

    async def create_problem(self, slug: str, title: str) -> Problem:
        async with get_session(self.engine) as session:
            problem = Problem(slug=slug, title=title)
            session.add(problem)
            try:
                await session.commit()
            except IntegrityError as e:
                raise ValidationError(f"problem '{slug}' already exists") from e
            await session.refresh(problem)
            return problem

    async def list_problems(self) -> Sequence[Problem]:
        async with get_session(self.engine) as session:
            q = await session.exec(select(Problem).order_by(Problem.id))
            return q.all()

    async def get_problem_by_slug(self, slug: str) -> Problem:
        async with get_session(self.engine) as session:
            q = await session.exec(select(Problem).where(Problem.slug == slug))
            problem = q.first()
            if problem is None:
                raise NotFoundError(f"problem '{slug}' not found")
            return problem

    async def get_boilerplate(self, problem_id: int, language_id: int) -> ProblemBoilerplate:
        async with get_session(self.engine) as session:
            q = await session.exec(
                select(ProblemBoilerplate).where(
                    ProblemBoilerplate.problem_id == problem_id,
                    ProblemBoilerplate.language_id == language_id,
                )
            )
            boilerplate = q.first()
            if boilerplate is None:
                raise NotFoundError(
                    f"boilerplate for problem {problem_id}, language {language_id} not found"
                )
            return boilerplate

    async def upsert_boilerplate(
        self, problem_id: int, language_id: int, code: str, full_code: str
    ) -> ProblemBoilerplate:
        async with get_session(self.engine) as session:
            q = await session.exec(
                select(ProblemBoilerplate).where(
                    ProblemBoilerplate.problem_id == problem_id,
                    ProblemBoilerplate.language_id == language_id,
                )
            )
            boilerplate = q.first()
            if boilerplate is None:
                boilerplate = ProblemBoilerplate(
                    problem_id=problem_id, language_id=language_id, code=code, full_code=full_code
                )
            else:
                boilerplate.code = code
                boilerplate.full_code = full_code
            session.add(boilerplate)
            await session.commit()
            await session.refresh(boilerplate)
            return boilerplate
