"""Client-facing status reads. Timeout policy belongs to the client."""
from typing import List, Optional

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from .models import Outcome, SubmissionStatus
from .orchestrator import SubmissionOrchestrator
from .store import SubmissionView


class TestCaseStatus(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    result_id: int
    position: int
    outcome: Outcome
    judge_status_id: Optional[int] = None
    judge_status_text: Optional[str] = None
    stdout: Optional[str] = None
    stderr: Optional[str] = None
    compile_output: Optional[str] = None
    message: Optional[str] = None
    time: Optional[float] = None
    memory: Optional[int] = None


class RunStatus(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    submission_id: int
    aggregate_status: SubmissionStatus
    finished_count: int
    passed_count: int
    total: int
    per_test_case: List[TestCaseStatus]


def to_run_status(view: SubmissionView) -> RunStatus:
    return RunStatus(
        submission_id=view.submission.id,
        aggregate_status=view.submission.status,
        finished_count=view.finished_count,
        passed_count=view.passed_count,
        total=view.total,
        per_test_case=[
            TestCaseStatus(
                result_id=r.id,
                position=r.position,
                outcome=r.outcome,
                judge_status_id=r.judge_status_id,
                judge_status_text=r.judge_status_text,
                stdout=r.stdout,
                stderr=r.stderr,
                compile_output=r.compile_output,
                message=r.message,
                time=r.time,
                memory=r.memory,
            )
            for r in view.results
        ],
    )


class PollingGateway:
    def __init__(self, orchestrator: SubmissionOrchestrator):
        self.orchestrator = orchestrator

    async def get_run_status(self, submission_id: int) -> RunStatus:
        # finalize() is a plain read unless every result has reported
        view = await self.orchestrator.finalize(submission_id)
        return to_run_status(view)
