"""FastAPI application for the exchange engine.

Note: Rate limiting is intentionally not implemented at the application level.
It should be handled at the infrastructure layer (reverse proxy / load balancer).
"""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import structlog
import uvicorn
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from dexengine import __version__
from dexengine.api.endpoints import router
from dexengine.config import EngineConfig
from dexengine.engine import Engine, build_engine
from dexengine.errors import DexError
from dexengine.log import configure_logging
from dexengine.safe_int import SafeIntError

logger = structlog.get_logger()

# Maximum request body size (1 MB)
MAX_REQUEST_SIZE = 1024 * 1024


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Build the engine on startup and resume settlements left mid-flight."""
    if getattr(app.state, "engine", None) is None:
        app.state.engine = build_engine(EngineConfig.from_env())
    engine = app.state.engine
    resumed = await engine.coordinator.resume_stuck(engine.config.stuck_after_minutes)
    if resumed:
        logger.info("startup_resumed_transactions", count=len(resumed))
    yield


def create_app(engine: Engine | None = None) -> FastAPI:
    """Create the API application.

    Args:
        engine: Prebuilt engine (tests). Built from the environment if omitted.
    """
    app = FastAPI(
        title="dexengine",
        description="Constant-product AMM pricing and liquidity accounting engine",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.engine = engine

    @app.middleware("http")
    async def limit_request_size(request: Request, call_next):  # type: ignore[no-untyped-def]
        """Reject requests with body larger than MAX_REQUEST_SIZE."""
        content_length = request.headers.get("content-length")
        if not content_length:
            return await call_next(request)
        try:
            size = int(content_length)
        except ValueError:
            return JSONResponse(status_code=400, content={"error": "validation_error", "detail": "Invalid Content-Length"})
        if size > MAX_REQUEST_SIZE:
            return JSONResponse(status_code=413, content={"error": "request_too_large", "detail": "Request too large"})
        return await call_next(request)

    @app.exception_handler(DexError)
    async def dex_error_handler(request: Request, exc: DexError) -> JSONResponse:
        log = logger.error if exc.status_code >= 500 else logger.info
        log("request_rejected", path=request.url.path, error=exc.code, detail=exc.detail)
        return JSONResponse(status_code=exc.status_code, content={"error": exc.code, "detail": exc.detail})

    @app.exception_handler(SafeIntError)
    async def arithmetic_error_handler(request: Request, exc: SafeIntError) -> JSONResponse:
        logger.info("arithmetic_rejected", path=request.url.path, detail=str(exc))
        return JSONResponse(status_code=400, content={"error": "arithmetic_error", "detail": str(exc)})

    @app.exception_handler(Exception)
    async def unexpected_error_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.exception("unhandled_error", path=request.url.path)
        return JSONResponse(status_code=500, content={"error": "internal_error", "detail": "Internal error"})

    @app.get("/health")
    async def health() -> dict[str, object]:
        """Health check endpoint."""
        engine = app.state.engine
        return {
            "status": "ok",
            "version": __version__,
            "pools": len(engine.registry) if engine is not None else 0,
        }

    app.include_router(router)
    return app


app = create_app()


def run(config: EngineConfig | None = None) -> None:
    """Run the API server.

    Configuration via environment variables:
    - DEX_HOST: Host to bind to (default: 0.0.0.0)
    - DEX_PORT: Port to bind to (default: 8000)
    - DEX_DEBUG: Enable debug/reload mode (default: false)
    """
    config = config or EngineConfig.from_env()
    configure_logging(verbose=config.debug, json=config.log_json)
    if config.debug:
        # Reload imports the module-level app, which reads DEX_* itself
        uvicorn.run("dexengine.api.main:app", host=config.host, port=config.port, reload=True)
        return
    uvicorn.run(create_app(build_engine(config)), host=config.host, port=config.port)


if __name__ == "__main__":
    run()
