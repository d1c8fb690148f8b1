from contextlib import asynccontextmanager

from fastapi import FastAPI
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from starlette.responses import Response

from app.api.notifications import router as notifications_router
from app.api.subscriptions import router as subscriptions_router
from app.api.unsubscribe import router as unsubscribe_router
from app.api.webhooks import router as webhooks_router
from app.config import settings
from app.errors import register_error_handlers
from app.logging import configure_logging
from app.observability import ObservabilityMiddleware
from app.services.hooks.registry import hook_registry


@asynccontextmanager
async def lifespan(app: FastAPI):
    hook_registry.load_defaults()
    yield
    hook_registry.clear()


app = FastAPI(title=f"{settings.brand_name} Notifications API", lifespan=lifespan)

configure_logging()
app.add_middleware(ObservabilityMiddleware)
register_error_handlers(app)


def _include_api_router(router, dependencies=None):
    app.include_router(router, dependencies=dependencies)
    app.include_router(router, prefix="/api/v1", dependencies=dependencies)


_include_api_router(subscriptions_router)
_include_api_router(notifications_router)
_include_api_router(webhooks_router)
# Unsubscribe links are emailed with the bare path
app.include_router(unsubscribe_router)


@app.get("/health")
def health_check():
    return {"status": "ok"}


@app.get("/metrics")
def metrics():
    data = generate_latest()
    return Response(content=data, media_type=CONTENT_TYPE_LATEST)
