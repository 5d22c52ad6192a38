from fastapi.middleware.cors import CORSMiddleware
from teamshare.routers.teams import router as team_router
from teamshare.routers.members import router as member_router
from teamshare.routers.exit_requests import router as exit_request_router
from teamshare.routers.permissions import router as permission_router

from fastapi import Request, FastAPI
from fastapi.responses import JSONResponse
from fastapi.exceptions import HTTPException
import logging
from apscheduler.schedulers.background import BackgroundScheduler
from .config import ACL_RESYNC_ENABLED, ACL_RESYNC_HOUR, CREATE_TABLES
from .database import init_db
from .exceptions import MembershipError
from .services.resync import resync_all_teams
from contextlib import asynccontextmanager

# Logger
logger = logging.getLogger("uvicorn.error")

# APScheduler instance
scheduler = BackgroundScheduler()


@asynccontextmanager
async def scheduler_lifespan(app: FastAPI):
    """Start/stop the nightly ACL reconciliation job."""
    if not ACL_RESYNC_ENABLED:
        yield
        return

    scheduler.add_job(resync_all_teams, "cron", hour=ACL_RESYNC_HOUR, id="acl_resync",
                      replace_existing=True)
    scheduler.start()
    logger.info(f"Scheduler started, ACL resync runs daily at {ACL_RESYNC_HOUR}:00")

    yield

    scheduler.shutdown()
    logger.info("Scheduler stopped")


@asynccontextmanager
async def database_lifespan(app: FastAPI):
    """Create missing tables if enabled via env var."""
    if CREATE_TABLES:
        logger.info("Creating database tables...")
        init_db()
    yield


# Combine lifespans into one
@asynccontextmanager
async def lifespan(app: FastAPI):
    async with database_lifespan(app):
        async with scheduler_lifespan(app):
            yield


# App instance
app = FastAPI(lifespan=lifespan)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Custom HTTP exception handler
@app.exception_handler(HTTPException)
async def custom_http_exception_handler(request: Request, exc: HTTPException):
    logger.error(f"HTTPException on {request.url}: {exc.detail}")
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.detail},
        headers=getattr(exc, "headers", None),
    )


# Membership errors raised by the service layer
@app.exception_handler(MembershipError)
async def membership_exception_handler(request: Request, exc: MembershipError):
    logger.error(f"{type(exc).__name__} on {request.url}: {exc.detail}")
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.detail},
    )

# API routers
prefix = "/api"

app.include_router(team_router, prefix=prefix)
app.include_router(member_router, prefix=prefix)
app.include_router(exit_request_router, prefix=prefix)
app.include_router(permission_router, prefix=prefix)
