import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator

import uvicorn
from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from starlette.exceptions import HTTPException

from .actor.routes import router as actor_router
from .core.error_handling import (
    general_exception_handler,
    http_exception_handler,
    registry_exception_handler,
    validation_exception_handler,
)
from .core.exceptions import RegistryError
from .core.models.base import LoggingLevelRequest
from .core.services import build_registry_services
from .ledger.routes import router as ledger_router
from .logging_config import logger, set_logger_and_children_level
from .request.routes import router as request_router
from .settings import settings

uvicorn_logger = logging.getLogger("uvicorn")
uvicorn_access_logger = logging.getLogger("uvicorn.access")
fastapi_logger = logging.getLogger("fastapi")

tags_metadata = [
    {
        "name": "Requests",
        "description": """Issue, Transfer and Retire requests. Each request is verified against
                        measured production, delivery or consumption, reviewed by the requester's
                        auditor and then committed to the credit ledger.""",
    },
    {
        "name": "Ledger",
        "description": "Read-only view of the authoritative credit ledger and its event log.",
    },
    {
        "name": "Actors",
        "description": "Plant, Industry and Auditor profiles with lifetime credit statistics.",
    },
]

origins = [
    "http://localhost:8080",
    "http://127.0.0.1:8080",
    "http://localhost:3000",
]
origins.extend(settings.cors_origins)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    Lifespan context manager for FastAPI application.
    Builds the registry services on startup and waits for in-flight commits on shutdown.
    """
    logger.info("Starting up application...")
    if not hasattr(app.state, "registry"):
        app.state.registry = build_registry_services(settings)
    logger.info("Application startup complete")

    try:
        yield
    finally:
        logger.info("Shutting down application...")
        pending = app.state.registry.engine.pending_commits()
        if pending:
            logger.warning(f"Shutting down with {len(pending)} commits in flight: {pending}")
        logger.info("Application shutdown complete")


app = FastAPI(
    openapi_tags=tags_metadata,
    title="Hydrogen Credit Registry API",
    description="Issuance, transfer and retirement of green-hydrogen credits with auditor review.",
    version="1.0.0",
    docs_url="/docs",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization", "X-Actor-Id", "Accept", "Origin"],
)

app.add_exception_handler(RegistryError, registry_exception_handler)
app.add_exception_handler(RequestValidationError, validation_exception_handler)
app.add_exception_handler(HTTPException, http_exception_handler)
app.add_exception_handler(Exception, general_exception_handler)

app.include_router(request_router, prefix="/requests")
app.include_router(ledger_router, prefix="/ledger")
app.include_router(actor_router, prefix="/actors")


@app.get("/", tags=["Core"])
async def root():
    return {
        "message": "Hydrogen Credit Registry API",
        "version": app.version,
        "endpoints": {
            "create_request": "POST /requests",
            "list_requests": "GET /requests",
            "decide": "POST /requests/{request_id}/decision",
            "reconcile": "POST /requests/{request_id}/reconcile",
            "credits": "GET /ledger/credits",
            "events": "GET /ledger/events",
            "statistics": "GET /ledger/statistics",
            "actor": "GET /actors/{actor_id}",
        },
    }


@app.post("/change_log_level", tags=["Core"])
async def change_log_level_endpoint(request: LoggingLevelRequest):
    """Change the logging level at runtime for all relevant loggers."""
    numeric_level = getattr(logging, request.level.value)

    loggers_to_update = [
        logger,
        uvicorn_logger,
        uvicorn_access_logger,
        fastapi_logger,
    ]

    updated: list[str] = []
    for logger_instance in loggers_to_update:
        updated.extend(
            updated_logger.name
            for updated_logger in set_logger_and_children_level(
                logger_instance, numeric_level
            )
        )

    return {
        "message": f"Log level changed to {request.level.value}",
        "updated_loggers": sorted(set(updated)),
    }


def main():
    uvicorn.run(
        "hc_registry.main:app",
        host="0.0.0.0",
        port=8000,
        log_level=settings.LOG_LEVEL.lower(),
    )


if __name__ == "__main__":
    main()
