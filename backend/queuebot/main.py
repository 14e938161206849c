# /queuebot/main.py

import os
import time
import asyncio
import uvicorn
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware

from queuebot.config.settings import settings
from queuebot.utils.lifecycle import lifespan
from queuebot.utils.metrics import response_time_histogram
from queuebot.utils.rate_limiter import limiter
from queuebot.routes import public, webhooks, notifications, whatsapp

REQUEST_TIMEOUT_SECONDS = 30.0

# (router, prefix below /api/<version>); public routes are mounted at the root
VERSIONED_ROUTERS = (
    (webhooks.router, "/webhooks"),
    (notifications.router, "/notifications"),
    (whatsapp.router, "/whatsapp"),
)


def _register_middleware(app: FastAPI) -> None:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # TestClient sends Host: testserver
    if settings.environment != "test":
        allowed_hosts = [host.strip() for host in settings.allowed_hosts.split(",") if host.strip()]
        if allowed_hosts:
            app.add_middleware(TrustedHostMiddleware, allowed_hosts=allowed_hosts)

    app.add_middleware(GZipMiddleware, minimum_size=1000)
    app.add_middleware(SlowAPIMiddleware)

    @app.middleware("http")
    async def performance_middleware(request: Request, call_next):
        started = time.perf_counter()
        response = await call_next(request)
        elapsed = time.perf_counter() - started
        response_time_histogram.labels(endpoint=request.url.path).observe(elapsed)
        response.headers["X-Process-Time"] = f"{elapsed:.4f}"
        return response

    @app.middleware("http")
    async def timeout_middleware(request: Request, call_next):
        try:
            return await asyncio.wait_for(call_next(request), timeout=REQUEST_TIMEOUT_SECONDS)
        except asyncio.TimeoutError:
            return JSONResponse({"detail": "Request timed out"}, status_code=504)


def create_app() -> FastAPI:
    api_root = f"/api/{settings.api_version}"
    expose_docs = settings.environment != "production"

    app = FastAPI(
        title="Queuebot WhatsApp Conversation Engine",
        version="1.0.0",
        description="Join service queues over WhatsApp: branch, department and service selection with ticket issuing",
        lifespan=lifespan,
        openapi_url=f"{api_root}/openapi.json" if expose_docs else None,
        docs_url=f"{api_root}/docs" if expose_docs else None,
        redoc_url=f"{api_root}/redoc" if expose_docs else None,
    )

    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
    _register_middleware(app)

    app.include_router(public.router)
    for router, prefix in VERSIONED_ROUTERS:
        app.include_router(router, prefix=f"{api_root}{prefix}")
    return app


app = create_app()

# Local development only; production runs under gunicorn (see gunicorn_conf.py)
if __name__ == "__main__":
    uvicorn.run(
        "queuebot.main:app",
        host=os.getenv("HOST", "127.0.0.1"),
        port=int(os.getenv("PORT", "8000")),
        reload=settings.environment == "development",
        workers=settings.workers if settings.environment == "production" else 1,
    )
