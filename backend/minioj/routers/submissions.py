import logging
from typing import List

from fastapi import APIRouter, BackgroundTasks, Depends, Request
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from ..ingest import parse_id
from ..models import SubmissionKind
from ..orchestrator import SubmissionOrchestrator
from ..polling import PollingGateway, RunStatus

router = APIRouter()
logger = logging.getLogger(__name__)


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class CreateSubmissionRequest(_CamelModel):
    user_id: str = Field(min_length=1)
    problem_slug: str = Field(min_length=1)
    language_id: int = Field(gt=0)
    code: str
    kind: SubmissionKind = SubmissionKind.SUBMIT


class RunRequest(_CamelModel):
    user_id: str = Field(min_length=1)
    problem_slug: str = Field(min_length=1)
    language_id: int = Field(gt=0)
    code: str


class TestCasePlaceholder(_CamelModel):
    result_id: int
    position: int
    input: str
    output: str


class CreateSubmissionResponse(_CamelModel):
    submission_id: int
    test_cases: List[TestCasePlaceholder]


def get_orchestrator(request: Request) -> SubmissionOrchestrator:
    return request.app.state.orchestrator


def get_gateway(request: Request) -> PollingGateway:
    return request.app.state.gateway


async def _create(
    orchestrator: SubmissionOrchestrator,
    background_tasks: BackgroundTasks,
    body: CreateSubmissionRequest,
) -> CreateSubmissionResponse:
    created = await orchestrator.create_submission(
        body.user_id, body.problem_slug, body.language_id, body.code, kind=body.kind
    )
    # judge dispatch runs after the 202 is sent
    background_tasks.add_task(orchestrator.dispatch, created)
    return CreateSubmissionResponse(
        submission_id=created.submission_id,
        test_cases=[
            TestCasePlaceholder(
                result_id=t.result_id,
                position=t.position,
                input=t.case.input,
                output=t.case.output,
            )
            for t in created.test_cases
        ],
    )


@router.post("/submissions", response_model=CreateSubmissionResponse, status_code=202)
async def create_submission_endpoint(
    body: CreateSubmissionRequest,
    background_tasks: BackgroundTasks,
    orchestrator: SubmissionOrchestrator = Depends(get_orchestrator),
):
    return await _create(orchestrator, background_tasks, body)


@router.post("/run", response_model=CreateSubmissionResponse, status_code=202)
async def run_endpoint(
    body: RunRequest,
    background_tasks: BackgroundTasks,
    orchestrator: SubmissionOrchestrator = Depends(get_orchestrator),
):
    """Quick check against the sample prefix of the corpus."""
    request = CreateSubmissionRequest(**body.model_dump(), kind=SubmissionKind.RUN)
    return await _create(orchestrator, background_tasks, request)


@router.get("/submissions/{submission_id}", response_model=RunStatus)
async def get_submission_status(
    submission_id: str,
    gateway: PollingGateway = Depends(get_gateway),
):
    numeric_id = parse_id(submission_id, "submission id")
    logger.debug("[Poll] Polling for submission %s", numeric_id)
    return await gateway.get_run_status(numeric_id)

