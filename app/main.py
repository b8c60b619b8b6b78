from contextlib import asynccontextmanager

from fastapi import FastAPI
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from starlette.responses import Response

from app.api.approvals import router as approvals_router
from app.api.document_shares import router as document_shares_router
from app.config import settings
from app.db import SessionLocal
from app.errors import register_error_handlers
from app.logging import configure_logging
from app.services.approval_policy import approval_policies
from app.services.approval_settings import approval_settings
from app.services.approval_sweeper import ApprovalExpirySweeper


def bootstrap(db) -> None:
    approval_settings.ensure_settings(db)
    approval_policies.ensure_global_system_policy(db)


@asynccontextmanager
async def lifespan(app: FastAPI):
    db = SessionLocal()
    try:
        bootstrap(db)
    finally:
        db.close()
    sweeper = None
    if settings.approval_sweeper_enabled:
        sweeper = ApprovalExpirySweeper()
        sweeper.start()
    app.state.sweeper = sweeper
    try:
        yield
    finally:
        if sweeper is not None:
            await sweeper.stop()


app = FastAPI(title=f"{settings.brand_name} API", lifespan=lifespan)

configure_logging()
register_error_handlers(app)


def _include_api_router(router, dependencies=None):
    app.include_router(router, dependencies=dependencies)
    app.include_router(router, prefix="/api/v1", dependencies=dependencies)


_include_api_router(approvals_router)
_include_api_router(document_shares_router)


@app.get("/health")
def health_check():
    return {"status": "ok"}


@app.get("/metrics")
def metrics():
    data = generate_latest()
    return Response(content=data, media_type=CONTENT_TYPE_LATEST)
