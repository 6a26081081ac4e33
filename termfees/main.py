"""Term fees FastAPI application."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.exc import SQLAlchemyError

from termfees.core.config import settings
from termfees.core.exceptions import AppException
from termfees.core.exceptions.handlers import (
    app_exception_handler,
    http_exception_handler,
    sqlalchemy_db_error_handler,
    validation_exception_handler,
)
from termfees.modules.fees.router import router as billing_router
from termfees.modules.payments.router import router as payments_router
from termfees.modules.students.router import router as students_router
from termfees.modules.terms.router import router as terms_router
from termfees.modules.terms.router import templates_router as fee_templates_router

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    logger.info("Term fees API starting (env=%s)", settings.app_env)
    yield
    logger.info("Term fees API shutting down")


def create_app() -> FastAPI:
    """Create and configure FastAPI application."""
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    app = FastAPI(
        title="Term Fees",
        description="Term billing and payment allocation for schools",
        version="0.1.0",
        debug=settings.debug,
        lifespan=lifespan,
    )

    # CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_allowed_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Exception handlers
    app.add_exception_handler(AppException, app_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(SQLAlchemyError, sqlalchemy_db_error_handler)

    @app.get("/health")
    async def health_check():
        return {"status": "healthy"}

    # Routers
    app.include_router(students_router, prefix="/api/v1")
    app.include_router(terms_router, prefix="/api/v1")
    app.include_router(fee_templates_router, prefix="/api/v1")
    app.include_router(billing_router, prefix="/api/v1")
    app.include_router(payments_router, prefix="/api/v1")

    return app


app = create_app()
