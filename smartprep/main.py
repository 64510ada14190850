"""FastAPI entrypoint for the SmartPrep test-preparation API."""

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from smartprep.config import get_settings
from smartprep.database import create_db_and_tables
from smartprep.errors import AppError
from smartprep.logging_config import configure_logging
from smartprep.routers import admin as admin_router_module
from smartprep.routers import student as student_router_module
from smartprep.routers import tests as tests_router_module
from smartprep.routers import whatsapp as whatsapp_router_module

configure_logging(get_settings().log_level)
logger = logging.getLogger(__name__)

app = FastAPI(title="SmartPrep")


@app.exception_handler(AppError)
async def app_error_handler(request: Request, exc: AppError):
    """Map service errors to their HTTP status with a stable error kind."""
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message, "error": exc.kind})


app.include_router(tests_router_module.router, prefix="/tests", tags=["tests"])
app.include_router(student_router_module.router, prefix="/student", tags=["student"])
app.include_router(admin_router_module.router, prefix="/admin", tags=["admin"])
app.include_router(whatsapp_router_module.router, prefix="/whatsapp", tags=["whatsapp"])


@app.get("/health")
def health():
    return {"status": "OK"}


@app.on_event("startup")
def on_startup():
    create_db_and_tables()
