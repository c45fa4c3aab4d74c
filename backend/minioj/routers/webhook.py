import logging
from typing import Optional

from fastapi import APIRouter, Depends, Request

from ..ingest import IngestResult, WebhookIngestor, parse_id

router = APIRouter()
logger = logging.getLogger(__name__)


def get_ingestor(request: Request) -> WebhookIngestor:
    return request.app.state.orchestrator.ingestor


@router.api_route("", methods=["PUT", "POST"])
async def judge_callback(
    request: Request,
    result_id: Optional[str] = None,
    ingestor: WebhookIngestor = Depends(get_ingestor),
):
    """Judge0 callback for one test case: PUT|POST /webhook?result_id=..."""
    numeric_id = parse_id(result_id)
    body = await request.body()
    res: IngestResult = await ingestor.ingest(numeric_id, body)
    return {"message": "Webhook received successfully.", "outcome": res.outcome.value}
