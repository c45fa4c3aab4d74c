import asyncio
import logging
import httpx
from typing import Any, Dict, Optional

from .config import Settings, get_settings
from .corpus import CorpusCase
from .errors import DispatchError

logger = logging.getLogger(__name__)

# Judge0 status vocabulary
JUDGE0_STATUS = {
    1: "In Queue",
    2: "Processing",
    3: "Accepted",
    4: "Wrong Answer",
    5: "Time Limit Exceeded",
    6: "Compilation Error",
    7: "Runtime Error (SIGSEGV)",
    8: "Runtime Error (SIGXFSZ)",
    9: "Runtime Error (SIGFPE)",
    10: "Runtime Error (SIGABRT)",
    11: "Runtime Error (NZEC)",
    12: "Runtime Error (Other)",
    13: "Internal Error",
    14: "Exec Format Error",
}
ACCEPTED_STATUS_ID = 3
NON_TERMINAL_STATUS_IDS = frozenset({1, 2})

DISPATCH_FAILED = "dispatch failed"


class JudgeClient:
    """Fire-and-forget submission of test-case jobs to Judge0.

    A successful dispatch only means Judge0 accepted the job; the outcome
    arrives later on the callback URL.
    """

    def __init__(
        self,
        base_url: str,
        callback_url: str,
        api_key: str = "",
        api_host: str = "",
        timeout: float = 10.0,
        attempts: int = 3,
        backoff_base: float = 0.5,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.callback_url = callback_url
        self.timeout = timeout
        self.attempts = max(1, attempts)
        self.backoff_base = backoff_base
        self.transport = transport
        self.headers = {"Content-Type": "application/json"}
        if api_key and api_host:
            self.headers.update({"X-RapidAPI-Key": api_key, "X-RapidAPI-Host": api_host})

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None, **kwargs) -> "JudgeClient":
        settings = settings or get_settings()
        return cls(
            base_url=settings.judge0_url,
            callback_url=settings.webhook_url,
            api_key=settings.judge0_key,
            api_host=settings.judge0_host,
            timeout=settings.judge0_timeout,
            attempts=settings.judge0_dispatch_attempts,
            backoff_base=settings.judge0_backoff_base,
            **kwargs,
        )

    def callback_for(self, result_id: int) -> str:
        return str(httpx.URL(self.callback_url).copy_merge_params({"result_id": str(result_id)}))

    async def create_submission(
        self,
        source: str,
        language_id: int,
        stdin: Optional[str] = None,
        expected_output: Optional[str] = None,
        callback_url: Optional[str] = None,
    ) -> Dict[str, Any]:
        url = f"{self.base_url}/submissions?base64_encoded=false&wait=false"
        payload = {
            "source_code": source,
            "language_id": language_id,
            "stdin": stdin or "",
            "expected_output": expected_output,
            "callback_url": callback_url,
        }
        payload = {k: v for k, v in payload.items() if v is not None}
        async with httpx.AsyncClient(transport=self.transport) as client:
            r = await client.post(url, json=payload, headers=self.headers, timeout=self.timeout)
            r.raise_for_status()
            return r.json()

    async def dispatch(
        self,
        test_case: CorpusCase,
        submission_id: int,
        result_id: int,
        source_code: str,
        language_id: int,
    ) -> Optional[str]:
        """Hand one test case to Judge0, retrying network errors and 5xx.

        Returns the judge token. Raises DispatchError once every attempt has
        failed or the judge rejected the job outright (4xx).
        """
        callback_url = self.callback_for(result_id)
        last_error: Optional[Exception] = None
        for attempt in range(self.attempts):
            if attempt:
                await asyncio.sleep(self.backoff_base * 2 ** (attempt - 1))
            try:
                res = await self.create_submission(
                    source_code,
                    language_id,
                    stdin=test_case.input,
                    expected_output=test_case.output,
                    callback_url=callback_url,
                )
            except httpx.HTTPStatusError as e:
                if e.response.status_code < 500:
                    raise DispatchError(
                        f"judge rejected result {result_id}: HTTP {e.response.status_code}"
                    ) from e
                last_error = e
            except httpx.TransportError as e:
                last_error = e
            else:
                token = res.get("token")
                logger.info(
                    "[Judge0] Dispatched submission %s result %s, token=%s",
                    submission_id, result_id, token,
                )
                return token
            logger.warning(
                "[Judge0] Dispatch attempt %d/%d for result %s failed: %s",
                attempt + 1, self.attempts, result_id, last_error,
            )
        raise DispatchError(
            f"judge unreachable for result {result_id} after {self.attempts} attempts"
        ) from last_error
