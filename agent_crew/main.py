import logging
from typing import Optional
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from .api.routes import router
from .core.completion_client import CompletionClient, build_completion_client
from .core.config import Settings
from .core.errors import Forbidden, RoleNotFound, TaskNotFound, Unauthorized
from .core.orchestrator import Orchestrator
from .store.redis_store import RedisTaskStore

logger = logging.getLogger(__name__)

_STATUS_CODES = {
    Unauthorized: 401,
    Forbidden: 403,
    TaskNotFound: 404,
    RoleNotFound: 404,
}


def create_app(
    settings: Optional[Settings] = None,
    client: Optional[CompletionClient] = None,
    store: Optional[RedisTaskStore] = None,
) -> FastAPI:
    """
    Builds the app and its services.

    The completion client and store are created here, once per process,
    and handed to the orchestrator; nothing reaches for them globally.
    """
    settings = settings or Settings.from_env()
    logging.basicConfig(level=settings.log_level)

    store = store or RedisTaskStore.from_settings(settings)
    client = client or build_completion_client(settings)
    orchestrator = Orchestrator(store, client, settings)

    app = FastAPI(title="Agent Crew", version="0.1.0")
    app.state.settings = settings
    app.state.orchestrator = orchestrator

    # CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(router)

    for error_class, status_code in _STATUS_CODES.items():
        async def handler(request: Request, exc: Exception, status_code: int = status_code):
            return JSONResponse(status_code=status_code, content={"detail": str(exc)})
        app.add_exception_handler(error_class, handler)

    @app.on_event("startup")
    async def startup_event():
        logger.info("Application starting up...")

        is_connected = await store.check_connection()
        if not is_connected:
            logger.warning("⚠️ Redis connection failed. Task requests will fail until it is back.")
            return

        await orchestrator.recover_interrupted()

    @app.on_event("shutdown")
    async def shutdown_event():
        logger.info("Application shutting down...")
        await orchestrator.shutdown()
        await store.close()

    return app


app = create_app()
