"""
Submission Orchestrator.

Creates submissions, fans test cases out to the judge and owns the
finalization rule. Finalization can be triggered by the last webhook (eager)
or by a poll (lazy); both paths collapse onto the store's conditional
Processing -> verdict update, so exactly one caller performs the transition
and every caller reports the same verdict.
"""
import asyncio
import logging
from dataclasses import dataclass
from datetime import timedelta
from typing import List, Optional

from .boilerplate import splice
from .corpus import CorpusCase, CorpusSource
from .errors import DispatchError, NotFoundError
from .ingest import WebhookIngestor
from .judge0 import DISPATCH_FAILED, JudgeClient
from .models import Outcome, SubmissionKind, SubmissionStatus, utcnow
from .store import ResultStore, ResultUpdate, SubmissionMeta, SubmissionView

logger = logging.getLogger(__name__)

FINALIZE_ATTEMPTS = 5


@dataclass
class PlannedTestCase:
    result_id: int
    position: int
    case: CorpusCase


@dataclass
class CreatedSubmission:
    submission_id: int
    source_code: str
    language_id: int
    test_cases: List[PlannedTestCase]


def decide_verdict(view: SubmissionView) -> SubmissionStatus:
    """Verdict for a fully reported submission."""
    if view.passed_count == view.total:
        return SubmissionStatus.ACCEPTED
    if all(r.judge_status_text == DISPATCH_FAILED for r in view.results):
        # the judge never accepted a single job
        return SubmissionStatus.ERRORED
    return SubmissionStatus.WRONG_ANSWER


class SubmissionOrchestrator:
    def __init__(
        self,
        store: ResultStore,
        judge: JudgeClient,
        corpus: CorpusSource,
        run_sample_size: int = 1,
        callback_base64: bool = True,
    ):
        self.store = store
        self.judge = judge
        self.corpus = corpus
        self.run_sample_size = run_sample_size
        self.ingestor = WebhookIngestor(
            store, finalizer=self.finalize, base64_encoded=callback_base64
        )

    async def create_submission(
        self,
        user_id: str,
        problem_slug: str,
        language_id: int,
        code: str,
        kind: SubmissionKind = SubmissionKind.SUBMIT,
    ) -> CreatedSubmission:
        """Persist a submission with one Pending placeholder per test case.

        Nothing is written unless the problem, the boilerplate and a non-empty
        corpus all resolve. The returned plan is handed to dispatch().
        """
        problem = await self.store.get_problem_by_slug(problem_slug)
        boilerplate = await self.store.get_boilerplate(problem.id, language_id)
        final_code = splice(boilerplate, code)

        cases = await self.corpus.load(problem_slug)
        if kind is SubmissionKind.RUN:
            cases = cases[: self.run_sample_size]
        if not cases:
            raise NotFoundError(f"no test cases found for problem '{problem_slug}'")

        meta = SubmissionMeta(
            user_id=user_id,
            problem_id=problem.id,
            language_id=language_id,
            source_code=code,
            kind=kind,
        )
        submission, result_ids = await self.store.create_submission(meta, len(cases))
        logger.info(
            "[Submit] Created %s submission %s for problem %s with %d test cases",
            kind.value, submission.id, problem_slug, len(cases),
        )
        return CreatedSubmission(
            submission_id=submission.id,
            source_code=final_code,
            language_id=language_id,
            test_cases=[
                PlannedTestCase(result_id=rid, position=i, case=case)
                for i, (rid, case) in enumerate(zip(result_ids, cases))
            ],
        )

    async def dispatch(self, created: CreatedSubmission) -> None:
        """Send every test case to the judge concurrently."""
        await asyncio.gather(
            *(self._dispatch_one(created, planned) for planned in created.test_cases)
        )

    async def _dispatch_one(self, created: CreatedSubmission, planned: PlannedTestCase) -> None:
        try:
            await self.judge.dispatch(
                planned.case,
                created.submission_id,
                planned.result_id,
                created.source_code,
                created.language_id,
            )
            return
        except DispatchError as e:
            logger.error("[Submit] %s", e)
        except Exception:
            logger.exception(
                "[Submit] Unexpected error dispatching result %s", planned.result_id
            )
        # degrade so the submission can still finalize
        await self.ingestor.record(
            planned.result_id,
            ResultUpdate(outcome=Outcome.FAILED, judge_status_text=DISPATCH_FAILED),
        )

    async def finalize(self, submission_id: int) -> SubmissionView:
        """Move a fully reported Processing submission to its verdict.

        A result can still change between the read and the guarded update;
        the store then refuses the stale verdict and the check is repeated on
        a fresh read.
        """
        for _ in range(FINALIZE_ATTEMPTS):
            view = await self.store.get_submission(submission_id)
            if view.submission.status is not SubmissionStatus.PROCESSING or not view.fully_reported:
                return view

            verdict = decide_verdict(view)
            if await self.store.finalize_if_processing(submission_id, verdict):
                logger.info(
                    "[Submit] Finalized submission %s: %s (%d/%d passed)",
                    submission_id, verdict.value, view.passed_count, view.total,
                )
                return await self.store.get_submission(submission_id)
        logger.warning(
            "[Submit] Submission %s results kept changing, finalize deferred", submission_id
        )
        return await self.store.get_submission(submission_id)

    async def sweep_stale(self, older_than: Optional[timedelta] = None) -> List[int]:
        """Re-run the finalization check for old Processing submissions.

        Returns the ids that reached a verdict. Results still Pending are left
        alone.
        """
        cutoff = utcnow() - (older_than or timedelta(0))
        finalized = []
        for submission_id in await self.store.list_stale_processing(cutoff):
            view = await self.finalize(submission_id)
            if view.submission.status.is_final:
                finalized.append(submission_id)
            else:
                logger.warning(
                    "[Sweep] Submission %s still waiting on %d/%d results",
                    submission_id, view.total - view.finished_count, view.total,
                )
        return finalized
