import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from database.db import create_tables
from idscan.config import (
    CORS_ALLOW_CREDENTIALS,
    CORS_ALLOW_HEADERS,
    CORS_ALLOW_METHODS,
    CORS_ALLOW_ORIGINS,
    LOG_LEVEL,
)
from idscan.errors import AttendanceError
from idscan.routers import attendance, auth, core, events, pins, register, reports, students
from idscan.services import runtime

logger = logging.getLogger(__name__)


def setup_logging(level: str = LOG_LEVEL) -> None:
    root = logging.getLogger()
    if not root.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(
            logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s")
        )
        root.addHandler(handler)
    root.setLevel(getattr(logging, level, logging.INFO))


setup_logging()

app = FastAPI(title="IDScan Attendance API")


# -----------------------------
# CORS
# -----------------------------
app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ALLOW_ORIGINS,
    allow_credentials=CORS_ALLOW_CREDENTIALS,
    allow_methods=CORS_ALLOW_METHODS,
    allow_headers=CORS_ALLOW_HEADERS,
)


# -----------------------------
# Errors
# -----------------------------
@app.exception_handler(AttendanceError)
async def attendance_error_handler(_request: Request, exc: AttendanceError):
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.message, "decision_code": exc.decision_code},
    )


# -----------------------------
# Startup / shutdown
# -----------------------------
@app.on_event("startup")
def _startup():
    create_tables()
    runtime.attach()
    logger.info("IDScan API started")


@app.on_event("shutdown")
def _shutdown():
    runtime.detach()


for module in (core, auth, register, students, events, pins, attendance, reports):
    app.include_router(module.router)
