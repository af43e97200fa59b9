import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from marketchat.config import Settings, get_settings
from marketchat.database.backend import Backend, close_backend, open_backend
from marketchat.errors import ChatError
from marketchat.logging_config import setup_logging
from marketchat.routers.chat import router as chat_router
from marketchat.routers.conversations import router as conversations_router
from marketchat.routers.presence import router as presence_router
from marketchat.routers.uploads import router as uploads_router
from marketchat.services.context import build_context


logger = logging.getLogger(__name__)


def create_app(settings: Optional[Settings] = None, backend: Optional[Backend] = None) -> FastAPI:
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        setup_logging(settings)
        active = backend or await open_backend(settings)
        if settings.provision_schema:
            await active.ensure_schema()
        app.state.chat = build_context(settings, active)
        logger.info("marketchat started (%s backend, %s environment)", active.name, settings.environment)
        try:
            yield
        finally:
            await close_backend(active)

    app = FastAPI(title="marketchat", lifespan=lifespan)

    @app.exception_handler(ChatError)
    async def chat_error_handler(request: Request, exc: ChatError):
        logger.warning("%s %s failed (%s): %s", request.method, request.url.path, exc.kind, exc)
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": exc.kind, "detail": exc.user_message, "field": exc.field},
        )

    app.include_router(conversations_router)
    app.include_router(chat_router)
    app.include_router(presence_router)
    app.include_router(uploads_router)

    @app.get("/")
    async def root(request: Request):
        return await request.app.state.chat.backend.describe()

    return app


app = create_app()
