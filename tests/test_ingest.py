import pytest

from minioj.errors import NotFoundError, ValidationError
from minioj.ingest import WebhookIngestor, decode_text, outcome_for, parse_callback, parse_id, to_update
from minioj.models import Outcome, SubmissionStatus
from minioj.store import ApplyOutcome

from conftest import PYTHON3, b64, callback

pytestmark = pytest.mark.anyio


@pytest.mark.parametrize(
    "status_id, expected",
    [
        (1, Outcome.PENDING),
        (2, Outcome.PENDING),
        (3, Outcome.PASSED),
        (4, Outcome.FAILED),
        (6, Outcome.FAILED),
        (13, Outcome.FAILED),
    ],
)
def test_outcome_for(status_id, expected):
    assert outcome_for(status_id) is expected


@pytest.mark.parametrize(
    "payload",
    [
        b"not json",
        b"{}",
        {"status": {"description": "Accepted"}},
        {"status": {"id": "three"}},
        {"status": {"id": 3}, "memory": "lots"},
    ],
)
def test_parse_callback_rejects_malformed(payload):
    with pytest.raises(ValidationError):
        parse_callback(payload)


def test_parse_callback_accepts_judge_shape():
    cb = parse_callback(b'{"status": {"id": 3, "description": "Accepted"}, "time": "0.02", "token": "t"}')
    assert cb.status.id == 3
    assert cb.time == 0.02
    assert cb.stdout is None


@pytest.mark.parametrize("raw", [None, "", "abc", "-1", "0"])
def test_parse_id_rejects(raw):
    with pytest.raises(ValidationError):
        parse_id(raw)


async def _start(orchestrator, slug="echo"):
    created = await orchestrator.create_submission("u1", slug, PYTHON3, "def solve(data):\n    return data\n")
    await orchestrator.dispatch(created)
    return created.submission_id, [t.result_id for t in created.test_cases]


async def test_duplicate_terminal_webhook_is_not_double_counted(orchestrator, store):
    submission_id, (r1, r2, r3) = await _start(orchestrator)
    ingestor = orchestrator.ingestor

    await ingestor.ingest(r1, callback(3, "Accepted"))
    await ingestor.ingest(r1, callback(3, "Accepted"))

    view = await store.get_submission(submission_id)
    assert view.finished_count == 1
    assert view.passed_count == 1
    assert view.submission.status is SubmissionStatus.PROCESSING


async def test_duplicate_after_finalize_is_ignored(orchestrator, store):
    submission_id, result_ids = await _start(orchestrator)
    ingestor = orchestrator.ingestor
    for rid in result_ids:
        await ingestor.ingest(rid, callback(3, "Accepted"))

    res = await ingestor.ingest(result_ids[0], callback(3, "Accepted"))
    assert res.outcome is ApplyOutcome.IGNORED

    late = await ingestor.ingest(result_ids[1], callback(4, "Wrong Answer", stdout="nope"))
    assert late.outcome is ApplyOutcome.IGNORED
    assert late.finalized is False

    view = await store.get_submission(submission_id)
    assert view.submission.status is SubmissionStatus.ACCEPTED
    assert view.finished_count == 3
    assert view.results[1].outcome is Outcome.PASSED
    assert view.results[1].stdout == "out"


async def test_terminal_overwrite_while_processing(orchestrator, store):
    submission_id, (r1, _, _) = await _start(orchestrator)
    ingestor = orchestrator.ingestor

    await ingestor.ingest(r1, callback(4, "Wrong Answer"))
    await ingestor.ingest(r1, callback(3, "Accepted", stdout="1\n"))

    result = await store.get_result(r1)
    assert result.outcome is Outcome.PASSED
    assert result.judge_status_text == "Accepted"
    assert result.stdout == "1\n"
    assert result.time == 0.01
    assert result.memory == 3200


async def test_non_terminal_status_recorded_without_finishing(orchestrator, store):
    submission_id, (r1, _, _) = await _start(orchestrator)

    res = await orchestrator.ingestor.ingest(r1, callback(2))
    assert res.outcome is ApplyOutcome.APPLIED
    assert res.result_outcome is Outcome.PENDING

    result = await store.get_result(r1)
    assert result.outcome is Outcome.PENDING
    assert result.judge_status_text == "Processing"
    assert (await store.get_submission(submission_id)).finished_count == 0


async def test_last_webhook_finalizes_inline(orchestrator, store):
    submission_id, (r1, r2) = await _start(orchestrator, slug="pair")
    ingestor = orchestrator.ingestor

    first = await ingestor.ingest(r1, callback(3, "Accepted"))
    assert first.finalized is False
    last = await ingestor.ingest(r2, callback(5, "Time Limit Exceeded"))
    assert last.finalized is True

    view = await store.get_submission(submission_id)
    assert view.submission.status is SubmissionStatus.WRONG_ANSWER
    assert view.results[1].judge_status_id == 5


async def test_unknown_result_id(orchestrator):
    with pytest.raises(NotFoundError):
        await orchestrator.ingestor.ingest(987654, callback(3))


async def test_malformed_payload_does_not_touch_store(orchestrator, store):
    submission_id, (r1, _, _) = await _start(orchestrator)
    with pytest.raises(ValidationError):
        await orchestrator.ingestor.ingest(r1, b'{"stdout": "x"}')
    assert (await store.get_result(r1)).outcome is Outcome.PENDING


def test_callback_text_fields_are_base64_decoded():
    cb = parse_callback(callback(6, "Compilation Error", stdout=None, compile_output="line 1\nSyntaxError\n"))
    change = to_update(cb, base64_encoded=True)
    assert change.compile_output == "line 1\nSyntaxError\n"
    assert change.stdout is None

    # Judge0 splits long base64 values over several lines
    wrapped = b64("x" * 100)
    assert decode_text(wrapped[:60] + "\n" + wrapped[60:] + "\n") == "x" * 100

    with pytest.raises(ValidationError):
        decode_text("not base64!")


async def test_plain_text_callbacks_when_decoding_disabled(orchestrator, store):
    submission_id, (r1, _, _) = await _start(orchestrator)
    ingestor = WebhookIngestor(store, orchestrator.finalize, base64_encoded=False)

    await ingestor.ingest(r1, callback(4, "Wrong Answer", encode=False, stdout="2\n"))
    assert (await store.get_result(r1)).stdout == "2\n"


async def test_undecodable_callback_does_not_touch_store(orchestrator, store):
    submission_id, (r1, _, _) = await _start(orchestrator)
    with pytest.raises(ValidationError):
        await orchestrator.ingestor.ingest(r1, callback(3, encode=False, stdout="1\n"))
    assert (await store.get_result(r1)).outcome is Outcome.PENDING
