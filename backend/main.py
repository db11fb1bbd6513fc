import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

import backend.config as config
from backend.routers import admin, core, student, teacher
from backend.services.sessions import recover_overdue_sessions, shutdown_scheduler
from database.db import create_tables

logging.basicConfig(
    level=config.LOG_LEVEL,
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(_app: FastAPI):
    create_tables()
    if config.SIGNING_KEY == config.DEFAULT_SIGNING_KEY:
        logger.warning("QUIKATTEND_SIGNING_KEY is not set; using the built-in default key")
    if config.RECOVERY_SWEEP_ON_STARTUP:
        stats = recover_overdue_sessions()
        logger.info("Startup sweep: %s", stats)
    try:
        yield
    finally:
        shutdown_scheduler()


app = FastAPI(title="QuikAttend API", lifespan=lifespan)

# -----------------------------
# CORS (web client)
# -----------------------------
app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ALLOW_ORIGINS,
    allow_credentials=config.CORS_ALLOW_CREDENTIALS,
    allow_methods=config.CORS_ALLOW_METHODS,
    allow_headers=config.CORS_ALLOW_HEADERS,
)

app.include_router(core.router)
app.include_router(teacher.router)
app.include_router(student.router)
app.include_router(admin.router)
