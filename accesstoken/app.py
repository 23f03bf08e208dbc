from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request

from accesstoken.api.error_handling import register_exception_handlers
from accesstoken.api.routes import get_gate, get_tokens, router
from accesstoken.logging import bind_request_context, get_logger
from accesstoken.service.runtime import Runtime, get_runtime

logger = get_logger(__name__)

__version__ = "0.1.0"


def create_app(runtime: Optional[Runtime] = None) -> FastAPI:
    """Build the HTTP app.

    With ``runtime`` given, its gate and token manager serve every request;
    otherwise the process-wide runtime is resolved on first use.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        try:
            await (runtime or get_runtime()).close()
            logger.info("runtime_cleanup_complete")
        except Exception as exc:
            logger.error("shutdown_failed", error=str(exc))

    app = FastAPI(title="Access Token Sessions", version=__version__, lifespan=lifespan)
    register_exception_handlers(app)
    app.include_router(router)

    if runtime is not None:
        app.dependency_overrides[get_gate] = lambda: runtime.gate
        app.dependency_overrides[get_tokens] = lambda: runtime.tokens

    @app.middleware("http")
    async def correlation_id_middleware(request: Request, call_next):
        cid = bind_request_context(
            request.headers.get("X-Request-ID"),
            method=request.method,
            path=request.url.path,
        )
        response = await call_next(request)
        response.headers["X-Request-ID"] = cid
        return response

    @app.get("/healthz")
    async def healthz():
        return {"status": "ok", "version": __version__}

    return app


app = create_app()
