"""FastAPI application wiring for supportflow.

- Configures logging, Prometheus metrics and rate limiting.
- Mounts the webhook, campaign, automation, inbox and contact routers.
- Shuts the background task pool down with the application.
"""

import logging
from contextlib import asynccontextmanager

from dotenv import load_dotenv
from fastapi import FastAPI, Request
from prometheus_fastapi_instrumentator import Instrumentator
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware

from .__version__ import __build_date__, __commit_sha__, __version__
from .app_logging import init_logging
from .config import get_settings
from .core.db import ensure_schema, transaction
from .dependencies import get_task_runner
from .routers import automations, campaigns, contacts, conversations, webhooks

load_dotenv()

logger = logging.getLogger(__name__)


def get_client_ip(request: Request) -> str:
    """Key the rate limiter on the first ``X-Forwarded-For`` hop or the peer."""
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else "unknown"


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()
    if settings.database_url and settings.auto_create_schema:
        with transaction() as conn:
            ensure_schema(conn)
        logger.info("Database schema ensured")
    if not settings.channel_configured:
        logger.warning("Channel credentials missing; outbound sends run in mock mode")
    yield
    get_task_runner().shutdown(wait=False)


limiter = Limiter(key_func=get_client_ip, default_limits=["120/minute"])

app = FastAPI(title="supportflow", version=__version__, lifespan=lifespan)
init_logging(app)
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
app.add_middleware(SlowAPIMiddleware)
app.include_router(webhooks.router)
app.include_router(campaigns.router)
app.include_router(automations.router)
app.include_router(conversations.router)
app.include_router(contacts.router)

# Expose Prometheus metrics
Instrumentator().instrument(app).expose(
    app, include_in_schema=False, endpoint="/api/metrics"
)


@app.get("/api/health")
async def health():
    """Liveness/readiness check with a minimal JSON body."""
    return {"status": "ok"}


@app.get("/api/version")
async def version():
    return {
        "version": __version__,
        "build_date": __build_date__,
        "commit_sha": __commit_sha__,
    }
