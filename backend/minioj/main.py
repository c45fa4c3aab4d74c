import asyncio
import logging
from datetime import timedelta
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncEngine

from .config import Settings, get_settings
from .corpus import CorpusSource, InMemoryCorpusSource, S3CorpusSource
from .db import get_engine, init_db
from .errors import OJError
from .judge0 import JudgeClient
from .orchestrator import SubmissionOrchestrator
from .polling import PollingGateway
from .routers import problems, submissions, webhook
from .store import ResultStore

logger = logging.getLogger(__name__)


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


async def _sweep_loop(orchestrator: SubmissionOrchestrator, interval: float, stale_after: float):
    while True:
        await asyncio.sleep(interval)
        try:
            finalized = await orchestrator.sweep_stale(timedelta(seconds=stale_after))
        except Exception:
            logger.exception("[Sweep] Stale submission sweep failed")
            continue
        if finalized:
            logger.info("[Sweep] Finalized %d stale submissions", len(finalized))


def create_app(
    settings: Optional[Settings] = None,
    engine: Optional[AsyncEngine] = None,
    judge: Optional[JudgeClient] = None,
    corpus: Optional[CorpusSource] = None,
) -> FastAPI:
    """Build the service; run with `uvicorn --factory minioj.main:create_app`."""
    settings = settings or get_settings()
    configure_logging(settings.log_level)
    engine = engine or get_engine()
    if corpus is None:
        if settings.bucket_name:
            corpus = S3CorpusSource(settings.bucket_name)
        else:
            logger.warning("BUCKET_NAME is not set; using an empty in-memory corpus")
            corpus = InMemoryCorpusSource()

    app = FastAPI(title="Mini OJ")
    store = ResultStore(engine)
    orchestrator = SubmissionOrchestrator(
        store,
        judge or JudgeClient.from_settings(settings),
        corpus,
        run_sample_size=settings.run_sample_size,
        callback_base64=settings.judge0_callback_base64,
    )
    app.state.settings = settings
    app.state.store = store
    app.state.orchestrator = orchestrator
    app.state.gateway = PollingGateway(orchestrator)
    app.state.sweeper = None

    @app.on_event("startup")
    async def on_startup():
        await init_db(engine)
        if settings.sweep_interval_seconds > 0:
            app.state.sweeper = asyncio.create_task(
                _sweep_loop(
                    orchestrator, settings.sweep_interval_seconds, settings.stale_after_seconds
                )
            )

    @app.on_event("shutdown")
    async def on_shutdown():
        if app.state.sweeper is not None:
            app.state.sweeper.cancel()

    @app.exception_handler(OJError)
    async def oj_error_handler(request: Request, exc: OJError):
        if exc.status_code >= 500:
            logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
        return JSONResponse({"error": exc.message}, status_code=exc.status_code)

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        return JSONResponse(
            {"error": "Invalid request body", "detail": jsonable_encoder(exc.errors())},
            status_code=400,
        )

    @app.exception_handler(Exception)
    async def internal_error_handler(request: Request, exc: Exception):
        logger.exception("%s %s: unexpected error", request.method, request.url.path)
        return JSONResponse({"error": "An internal server error occurred."}, status_code=500)

    @app.get("/health")
    async def health():
        return {"status": "ok"}

    app.include_router(problems.router, prefix="/problems", tags=["problems"])
    app.include_router(submissions.router, tags=["submissions"])
    app.include_router(webhook.router, prefix="/webhook", tags=["webhook"])
    return app

