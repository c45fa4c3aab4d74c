"""
Webhook Ingestor.

Turns Judge0 completion callbacks into idempotent updates of TestCaseResult
rows and fires the eager finalization check when the last result lands.
Callbacks may arrive in any order, more than once, or after the submission
has already been finalized.
"""
import base64
import binascii
import logging
from typing import Any, Awaitable, Callable, Optional, Union

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from .errors import ValidationError
from .judge0 import ACCEPTED_STATUS_ID, JUDGE0_STATUS, NON_TERMINAL_STATUS_IDS
from .models import Outcome
from .store import ApplyOutcome, ResultStore, ResultUpdate

logger = logging.getLogger(__name__)

Finalizer = Callable[[int], Awaitable[Any]]


class JudgeStatus(BaseModel):
    id: int
    description: Optional[str] = None


class JudgeCallback(BaseModel):
    status: JudgeStatus
    stdout: Optional[str] = None
    stderr: Optional[str] = None
    compile_output: Optional[str] = None
    message: Optional[str] = None
    time: Optional[float] = None
    memory: Optional[int] = None
    token: Optional[str] = None


class IngestResult(BaseModel):
    outcome: ApplyOutcome
    result_outcome: Outcome
    submission_id: int
    finalized: bool = False


def outcome_for(status_id: int) -> Outcome:
    if status_id == ACCEPTED_STATUS_ID:
        return Outcome.PASSED
    if status_id in NON_TERMINAL_STATUS_IDS:
        return Outcome.PENDING
    return Outcome.FAILED


def parse_id(raw: Union[str, int, None], name: str = "result_id") -> int:
    if raw is None or raw == "":
        raise ValidationError(f"missing {name}")
    try:
        value = int(raw)
    except (TypeError, ValueError):
        raise ValidationError(f"invalid {name}: {raw!r}")
    if value <= 0:
        raise ValidationError(f"invalid {name}: {raw!r}")
    return value


def parse_callback(payload: Union[bytes, str, dict]) -> JudgeCallback:
    try:
        if isinstance(payload, (bytes, str)):
            return JudgeCallback.model_validate_json(payload)
        return JudgeCallback.model_validate(payload)
    except PydanticValidationError as e:
        raise ValidationError("invalid callback body") from e


def decode_text(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    try:
        # Judge0 wraps base64 lines at 60 characters
        raw = base64.b64decode("".join(value.split()), validate=True)
    except (binascii.Error, ValueError) as e:
        raise ValidationError("callback text field is not valid base64") from e
    return raw.decode("utf-8", errors="replace")


def to_update(callback: JudgeCallback, base64_encoded: bool = False) -> ResultUpdate:
    status = callback.status
    text = decode_text if base64_encoded else (lambda value: value)
    return ResultUpdate(
        outcome=outcome_for(status.id),
        judge_status_id=status.id,
        judge_status_text=status.description or JUDGE0_STATUS.get(status.id),
        stdout=text(callback.stdout),
        stderr=text(callback.stderr),
        compile_output=text(callback.compile_output),
        message=text(callback.message),
        time=callback.time,
        memory=callback.memory,
        token=callback.token,
    )


class WebhookIngestor:
    def __init__(self, store: ResultStore, finalizer: Finalizer, base64_encoded: bool = True):
        self.store = store
        self.finalizer = finalizer
        self.base64_encoded = base64_encoded

    async def ingest(self, result_id: int, payload: Union[bytes, str, dict]) -> IngestResult:
        callback = parse_callback(payload)
        return await self.record(result_id, to_update(callback, self.base64_encoded))

    async def record(self, result_id: int, change: ResultUpdate) -> IngestResult:
        """Apply one outcome and finalize the submission if it was the last pending one."""
        result = await self.store.get_result(result_id)
        applied = await self.store.apply_result(result_id, change)
        res = IngestResult(
            outcome=applied,
            result_outcome=change.outcome,
            submission_id=result.submission_id,
        )
        if applied is ApplyOutcome.IGNORED:
            logger.info(
                "[Webhook] Ignored %s for result %s (submission %s finalized or result already terminal)",
                change.outcome.value, result_id, result.submission_id,
            )
            return res

        logger.info(
            "[Webhook] Processed: result %s, judge status %s, outcome %s",
            result_id, change.judge_status_id, change.outcome.value,
        )
        if change.outcome is Outcome.PENDING:
            return res

        if await self.store.count_pending(result.submission_id) == 0:
            await self.finalizer(result.submission_id)
            res.finalized = True
        return res
