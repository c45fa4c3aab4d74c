"""
Test-case corpus lookup.

Each problem's corpus lives in object storage at
``problems/{slug}/input_output.json`` as an ordered JSON list of
``{"input": ..., "output": ...}`` pairs.
"""
import asyncio
from abc import ABC, abstractmethod
import logging
from typing import Dict, List, Optional

import boto3
from botocore.exceptions import ClientError
from pydantic import BaseModel, TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from .config import get_settings
from .errors import InternalError

logger = logging.getLogger(__name__)


class CorpusCase(BaseModel):
    input: str = ""
    output: str = ""


_corpus_adapter = TypeAdapter(List[CorpusCase])


def corpus_key(slug: str) -> str:
    return f"problems/{slug}/input_output.json"


def parse_corpus(raw) -> List[CorpusCase]:
    try:
        if isinstance(raw, (str, bytes)):
            return _corpus_adapter.validate_json(raw)
        return _corpus_adapter.validate_python(raw)
    except PydanticValidationError as e:
        raise InternalError(f"malformed test-case corpus: {e.error_count()} errors") from e


class CorpusSource(ABC):
    @abstractmethod
    async def load(self, slug: str) -> List[CorpusCase]:
        """Ordered test cases for a problem; empty when it has none."""


class S3CorpusSource(CorpusSource):
    def __init__(self, bucket: str, client=None):
        self.bucket = bucket
        self.client = client or boto3.client("s3", region_name=get_settings().aws_region)

    def _download(self, key: str) -> Optional[bytes]:
        try:
            obj = self.client.get_object(Bucket=self.bucket, Key=key)
        except ClientError as e:
            if e.response.get("Error", {}).get("Code") in ("NoSuchKey", "404"):
                return None
            raise
        return obj["Body"].read()

    async def load(self, slug: str) -> List[CorpusCase]:
        key = corpus_key(slug)
        logger.info("[Corpus] Fetching test cases from s3://%s/%s", self.bucket, key)
        try:
            body = await asyncio.to_thread(self._download, key)
        except ClientError as e:
            logger.error("[Corpus] S3 error fetching %s: %s", key, e)
            raise InternalError("failed to fetch test cases from object storage") from e
        if body is None:
            logger.warning("[Corpus] Test case file not found for slug: %s", slug)
            return []
        return parse_corpus(body)


class InMemoryCorpusSource(CorpusSource):
    """Corpus held in process, keyed by problem slug. Used for local runs and tests."""

    def __init__(self, corpora: Optional[Dict[str, list]] = None):
        self.corpora = {slug: parse_corpus(cases) for slug, cases in (corpora or {}).items()}

    def put(self, slug: str, cases) -> None:
        self.corpora[slug] = parse_corpus(cases)

    async def load(self, slug: str) -> List[CorpusCase]:
        return list(self.corpora.get(slug, []))
