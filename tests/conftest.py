import base64
import json

import httpx
import pytest

from minioj.corpus import InMemoryCorpusSource
from minioj.db import init_db, make_engine
from minioj.judge0 import JudgeClient
from minioj.orchestrator import SubmissionOrchestrator
from minioj.store import ResultStore

PYTHON3 = 71
STUB = "def solve(data):\n    pass\n"
FULL_CODE = "import sys\n\n" + STUB + "\nprint(solve(sys.stdin.read()))\n"

CORPUS = {
    "echo": [
        {"input": "1\n", "output": "1\n"},
        {"input": "2\n", "output": "2\n"},
        {"input": "3\n", "output": "3\n"},
    ],
    "pair": [
        {"input": "a\n", "output": "a\n"},
        {"input": "b\n", "output": "b\n"},
    ],
    "empty": [],
}


@pytest.fixture
def anyio_backend():
    return "asyncio"


class FakeJudge:
    """Records Judge0 submission requests; stdin values in `fail_stdin` answer 503."""

    def __init__(self):
        self.requests = []
        self.fail_stdin = set()

    def handler(self, request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        self.requests.append(body)
        if body.get("stdin") in self.fail_stdin:
            return httpx.Response(503, json={"error": "unavailable"})
        return httpx.Response(201, json={"token": f"tok-{len(self.requests)}"})

    def client(self, **kwargs) -> JudgeClient:
        return JudgeClient(
            base_url="http://judge.test",
            callback_url="http://oj.test/webhook",
            backoff_base=0,
            transport=httpx.MockTransport(self.handler),
            **kwargs,
        )


@pytest.fixture
def engine(tmp_path):
    return make_engine(f"sqlite+aiosqlite:///{tmp_path / 'oj.db'}")


@pytest.fixture
def fake_judge():
    return FakeJudge()


@pytest.fixture
def corpus():
    return InMemoryCorpusSource(CORPUS)


@pytest.fixture
async def store(engine):
    await init_db(engine)
    store = ResultStore(engine)
    for slug in CORPUS:
        problem = await store.create_problem(slug, slug.title())
        await store.upsert_boilerplate(problem.id, PYTHON3, STUB, FULL_CODE)
    yield store
    await engine.dispose()


@pytest.fixture
def orchestrator(store, fake_judge, corpus):
    return SubmissionOrchestrator(store, fake_judge.client(), corpus, run_sample_size=1)


TEXT_FIELDS = ("stdout", "stderr", "compile_output", "message")


def b64(text):
    return base64.b64encode(text.encode()).decode()


def callback(status_id, description=None, encode=True, **fields):
    """Judge0 callback body; text fields are base64-encoded as Judge0 sends them."""
    payload = {
        "status": {"id": status_id, "description": description},
        "stdout": "out",
        "stderr": None,
        "compile_output": None,
        "message": None,
        "time": "0.01",
        "memory": 3200,
        "token": "tok",
    }
    payload.update(fields)
    if encode:
        for key in TEXT_FIELDS:
            if payload[key] is not None:
                payload[key] = b64(payload[key])
    return payload
