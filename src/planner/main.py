from __future__ import annotations

from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .errors import ErrorKind, ServiceError
from .factory import ServiceRegistry, build_services
from .logging_config import setup_logging
from .routers import attachments, calendars, events, tags, task_lists, tasks
from .settings import Settings, get_settings

openapi_tags = [
    {"name": "health", "description": "Service health and status endpoints."},
    {"name": "tasks", "description": "Tasks with filtering, completion toggling and bulk operations."},
    {"name": "task-lists", "description": "Task lists; deleting a list moves its tasks to the default list."},
    {"name": "calendars", "description": "Calendars with a single default per user."},
    {"name": "events", "description": "Calendar events and conflict detection."},
    {"name": "tags", "description": "Shared tags, merging and usage statistics."},
    {"name": "attachments", "description": "Task attachments and storage statistics."},
]

ERROR_STATUS = {
    ErrorKind.VALIDATION: 400,
    ErrorKind.AUTHORIZATION: 403,
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.INTERNAL: 500,
}


# PUBLIC_INTERFACE
def create_app(settings: Optional[Settings] = None, services: Optional[ServiceRegistry] = None) -> FastAPI:
    """
    Application factory: configure logging, migrate the database, build the
    services once and mount the routers.

    Run with ``uvicorn planner.main:create_app --factory``.
    """
    settings = settings or (services.settings if services else get_settings())
    setup_logging(settings.log_level, settings.log_file)

    app = FastAPI(
        title="Planner Backend",
        description="Owner-scoped data access for tasks, task lists, calendars, events, tags and attachments.",
        version="0.1.0",
        openapi_tags=openapi_tags,
    )
    app.state.services = services or build_services(settings)

    allow_all = (settings.cors_allow_origins == ["*"]) or (len(settings.cors_allow_origins) == 0)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"] if allow_all else settings.cors_allow_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        """
        Return a consistent JSON structure for request validation errors.

        Response format:
            {
                "error": "ValidationError",
                "detail": [... pydantic/fastapi error details ...],
                "message": "Request validation failed"
            }
        """
        return JSONResponse(
            status_code=422,
            content={
                "error": "ValidationError",
                "message": "Request validation failed",
                "detail": [
                    {"loc": list(e.get("loc", ())), "msg": e.get("msg"), "type": e.get("type")} for e in exc.errors()
                ],
            },
        )

    @app.exception_handler(ServiceError)
    async def service_error_handler(request: Request, exc: ServiceError) -> JSONResponse:
        """Map a typed service error onto its HTTP status."""
        return JSONResponse(
            status_code=ERROR_STATUS.get(exc.kind, 500),
            content={"error": exc.kind.value, "message": str(exc), "detail": exc.details},
        )

    # PUBLIC_INTERFACE
    @app.get("/", summary="Health Check", tags=["health"])
    def health_check():
        """
        Health check endpoint.

        Returns:
            A JSON object indicating service health and the schema version.
        """
        return {"message": "Healthy", "schema_version": app.state.services.db.current_version()}

    for module in (tasks, task_lists, calendars, events, tags, attachments):
        app.include_router(module.router)
    return app
