"""
Sahayak - offline-first government services assistant API.
Receives queued device submissions, issues reference numbers and tracks applications.
"""
import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .core.config import settings
from .core.errors import SahayakError, ValidationError
from .models.base import Base, engine
from .models import user, workflow, sync  # noqa: F401  Ensure tables are registered
from .api import sync as sync_api, workflows, users
from .core.activity_middleware import ActivityLogMiddleware
from .seed_demo import seed_demo_data

logging.basicConfig(level=settings.LOG_LEVEL)

# NOTE: In production, use Alembic migrations instead of create_all()
Base.metadata.create_all(bind=engine)

if settings.SEED_DEMO_DATA:
    seed_demo_data()

app = FastAPI(
    title="Sahayak Sync API",
    description=(
        "Server side of the offline-first government services assistant: "
        "idempotent batch sync, reference numbers and application tracking."
    ),
    version=settings.VERSION,
    docs_url="/docs",
    redoc_url="/redoc",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.add_middleware(ActivityLogMiddleware)

app.include_router(sync_api.router, prefix="/api/v1")
app.include_router(workflows.router, prefix="/api/v1")
app.include_router(users.router, prefix="/api/v1")


@app.exception_handler(SahayakError)
async def sahayak_error_handler(request: Request, exc: SahayakError):
    status_code = 422 if isinstance(exc, ValidationError) else 500
    return JSONResponse(
        status_code=status_code,
        content={"success": False, "error": {"code": exc.code, "message": str(exc)}},
    )


@app.get("/health")
def health_check():
    return {"status": "healthy", "service": settings.APP_NAME, "version": settings.VERSION}
