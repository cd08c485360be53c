import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import ORJSONResponse

from adchat.config import settings
from adchat.errors import (
    ConversationBusyError,
    MissingReferenceError,
    NotFoundError,
    PromptTooLongError,
    TransientIOError,
    VideoChatConfigError,
    VideoChatRequestError,
)
from adchat.routers import jobs, video_chat
from adchat.runtime import get_runtime

logger = logging.getLogger(__name__)


def _request_error_status(exc: VideoChatRequestError) -> int:
    if isinstance(exc, NotFoundError):
        return 404
    if isinstance(exc, PromptTooLongError):
        return 422
    if isinstance(exc, TransientIOError):
        return 503
    return 502


@asynccontextmanager
async def _app_lifespan(_app: FastAPI) -> AsyncIterator[None]:
    try:
        yield
    finally:
        if get_runtime.cache_info().currsize:
            get_runtime().shutdown()


def create_app() -> FastAPI:
    app = FastAPI(
        title="Ad Chat API",
        default_response_class=ORJSONResponse,
        lifespan=_app_lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(VideoChatRequestError)
    async def video_chat_request_error_handler(_request: Request, exc: VideoChatRequestError) -> ORJSONResponse:
        status_code = _request_error_status(exc)
        if status_code >= 500:
            logger.warning("Video chat backend error: %s", exc)
        content = {"detail": exc.message}
        if exc.error_code:
            content["code"] = exc.error_code
        if isinstance(exc, PromptTooLongError):
            content["code"] = "prompt_too_long"
        return ORJSONResponse(status_code=status_code, content=content)

    @app.exception_handler(MissingReferenceError)
    async def missing_reference_error_handler(_request: Request, exc: MissingReferenceError) -> ORJSONResponse:
        return ORJSONResponse(status_code=400, content={"detail": str(exc)})

    @app.exception_handler(ConversationBusyError)
    async def conversation_busy_error_handler(_request: Request, exc: ConversationBusyError) -> ORJSONResponse:
        return ORJSONResponse(status_code=409, content={"detail": str(exc)})

    @app.exception_handler(VideoChatConfigError)
    async def config_error_handler(_request: Request, exc: VideoChatConfigError) -> ORJSONResponse:
        logger.error("Video chat is not configured: %s", exc)
        return ORJSONResponse(status_code=500, content={"detail": str(exc)})

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(_request: Request, exc: Exception) -> ORJSONResponse:
        logger.exception("Unhandled server exception", exc_info=exc)
        return ORJSONResponse(status_code=500, content={"detail": "Internal server error."})

    @app.get("/health")
    async def health() -> dict[str, bool]:
        return {"ok": True}

    app.include_router(video_chat.router)
    app.include_router(jobs.router)

    return app


app = create_app()
