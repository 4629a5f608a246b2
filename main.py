"""
FastAPI Application for the Surgical Mart POS backend.

Exposes the returns reconciliation and recurring expense APIs.
"""

import logging
from contextlib import asynccontextmanager
from typing import Optional

from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from config import settings
from core.errors import PosError
from core.session import SessionManager
from shared.repositories import Repositories, build_repositories
from use_cases import (
    RecurringExpenseService,
    ReturnProcessor,
    ReturnWorkflow,
    expenses_router,
    returns_router,
    stock_router,
)

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.log_level.upper()),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)

# Reduce Azure SDK logging verbosity
logging.getLogger("azure.cosmos").setLevel(logging.WARNING)
logging.getLogger("azure.core").setLevel(logging.WARNING)
logging.getLogger("azure.identity").setLevel(logging.WARNING)
logging.getLogger("httpx").setLevel(logging.WARNING)


def create_app(repositories: Optional[Repositories] = None) -> FastAPI:
    """
    Build the application.

    Args:
        repositories: Document repositories to use; built from
            settings.data_backend at startup when omitted
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan manager - handles startup and shutdown."""
        logger.info("Starting Surgical Mart POS backend...")

        repos = repositories or build_repositories()
        app.state.return_processor = ReturnProcessor(repos)
        app.state.return_workflows = SessionManager(
            context_factory=ReturnWorkflow,
            ttl_minutes=settings.workflow_ttl_minutes,
        )
        app.state.expense_service = RecurringExpenseService(repos)
        logger.info(f"Returns and expenses ready (backend: {settings.data_backend})")

        yield

        # Cleanup
        logger.info("Shutting down...")
        app.state.return_workflows.clear_all()

    app = FastAPI(
        title="Surgical Mart POS",
        description="Returns reconciliation and recurring expenses for a retail POS",
        version="1.0.0",
        lifespan=lifespan,
        docs_url="/api/docs",
        redoc_url="/api/redoc"
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origin_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(PosError)
    async def pos_error_handler(request: Request, exc: PosError):
        logger.warning(f"{request.method} {request.url.path} -> {exc.code}: {exc.message}")
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        errors = [
            {
                "field": ".".join(str(part) for part in error["loc"] if part != "body"),
                "rule": error["type"],
                "message": error["msg"],
            }
            for error in exc.errors()
        ]
        return JSONResponse(
            status_code=422,
            content={"success": False, "code": "request_invalid", "message": "Validation error", "errors": errors},
        )

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception):
        logger.error(f"Error processing {request.method} {request.url.path}: {exc}", exc_info=True)
        return JSONResponse(
            status_code=500,
            content={"success": False, "code": "internal_error", "message": "Internal server error"},
        )

    @app.get("/health")
    async def health_check():
        """Health check endpoint."""
        return {
            "status": "healthy",
            "version": "1.0.0",
            "shop": settings.brand_name,
            "data_backend": settings.data_backend,
        }

    app.include_router(returns_router)
    app.include_router(stock_router)
    app.include_router(expenses_router)
    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "main:app",
        host=settings.app_host,
        port=settings.app_port,
        reload=False,
        log_level=settings.log_level.lower()
    )
