"""Entry point for the Vibereport scan worker FastAPI application."""

import logging
import os
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from api.routes import router as api_router
from services.app_state import AppState, Settings, build_app_state
from utils.git_clone import resolve_git_executable

logger = logging.getLogger(__name__)


def configure_logging(level: str | None = None) -> None:
    logging.basicConfig(
        level=(level or os.getenv("LOG_LEVEL", "INFO")).upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def load_app_state() -> AppState:
    """Build AppState from the environment. Fails fast on missing git or AUTH_TOKEN."""
    git_bin = resolve_git_executable()
    return build_app_state(Settings.from_env(git_bin=git_bin))


def create_app(state: AppState | None = None) -> FastAPI:
    """
    Create the FastAPI application.

    Args:
        state: Prebuilt shared state. If None, it is loaded from the
            environment when the app starts up.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if getattr(app.state, "app_state", None) is None:
            app.state.app_state = load_app_state()
        current: AppState = app.state.app_state
        logger.info(
            "Scan worker ready: user pool=%d, index pool=%d, analyzer=%s",
            current.user_pool.capacity,
            current.index_pool.capacity,
            current.settings.analyzer_bin,
        )
        try:
            yield
        finally:
            await current.shutdown()

    app = FastAPI(title="Vibereport Scan Worker", version="0.1.0", lifespan=lifespan)
    app.state.app_state = state

    @app.exception_handler(RequestValidationError)
    async def malformed_body_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        # Malformed request bodies are a 400 for this API, not FastAPI's default 422
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"detail": "Malformed request body"},
        )

    app.include_router(api_router)

    @app.get("/")
    async def root() -> dict:
        """
        Simple heartbeat endpoint to confirm the API is online.

        Returns:
            dict: App metadata payload.
        """
        return {"status": "ok", "app": "Vibereport Scan Worker"}

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    configure_logging()
    state = load_app_state()
    uvicorn.run(
        create_app(state),
        host=state.settings.host,
        port=state.settings.port,
        log_level=state.settings.log_level.lower(),
    )
