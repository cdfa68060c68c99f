import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from backend import config
from backend.errors import TrackerError
from backend.routers.admin import router as admin_router
from backend.routers.analytics import router as analytics_router
from backend.routers.attendance import router as attendance_router
from backend.routers.auth import router as auth_router
from backend.routers.core import router as core_router
from backend.routers.guests import router as guests_router
from backend.routers.sessions import router as sessions_router
from database.db import EntityStore

logging.basicConfig(
    level=config.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # DB_PATH is read here, not at import, so tests can point it at a temp file.
    store = EntityStore(config.DB_PATH, busy_timeout=config.DB_BUSY_TIMEOUT_SECONDS)
    store.create_tables()
    app.state.store = store
    logger.info("Attendance store ready at %s", config.DB_PATH)
    yield


app = FastAPI(title="QR Attendance Tracker API", lifespan=lifespan)


# -----------------------------
# CORS (React dev server)
# -----------------------------
app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ALLOW_ORIGINS,
    allow_credentials=config.CORS_ALLOW_CREDENTIALS,
    allow_methods=config.CORS_ALLOW_METHODS,
    allow_headers=config.CORS_ALLOW_HEADERS,
)


@app.exception_handler(TrackerError)
async def tracker_error_handler(_request: Request, exc: TrackerError):
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.message, "code": exc.error_code},
    )


app.include_router(core_router)
app.include_router(auth_router)
app.include_router(sessions_router)
app.include_router(guests_router)
app.include_router(attendance_router)
app.include_router(analytics_router)
app.include_router(admin_router)
