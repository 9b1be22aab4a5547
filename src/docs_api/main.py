from textwrap import dedent
import logging
import pydantic
from fastapi import FastAPI
from fastapi.routing import APIRoute
from fastapi.middleware.cors import CORSMiddleware

from docs_api.errors import (
    StorageError,
    handle_broad_exceptions,
    handle_pydantic_validation_errors,
    handle_storage_errors,
)
from docs_api.adapters.storage import get_file_storage
from docs_api.routers.auth import router as auth_router
from docs_api.routers.documents import router as documents_router
from docs_api.routers.health import router as health_router
from docs_api.config.settings import Settings
from docs_api.database.local import init_db, seed_roles

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

# Set up logging
logger = logging.getLogger(__name__)


def configure_logging(level: str = "INFO") -> None:
    """Configure root logging for the API process."""
    logging.basicConfig(level=getattr(logging, level.upper(), logging.INFO), format=LOG_FORMAT)


def create_app(settings: Settings | None = None) -> FastAPI:
    """Create a FastAPI application."""
    settings = settings or Settings()
    configure_logging(settings.log_level)

    app = FastAPI(
        title="Document API",
        summary="Store, download and e-mail documents",
        version="v1",
        description=dedent(
            """\
        Upload PDF and DOCX documents, download them again and send them as
        e-mail attachments. Documents are visible to their owner and to admins.

        | Endpoint group | Notes |
        | --- | --- |
        | `/auth` | register, log in, grant admin |
        | `/documents` | upload, list, get or download, delete, send |
        """
        ),
        docs_url="/",  # its easier to find the docs when they live on the base url
        generate_unique_id_function=custom_generate_unique_id,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.state.settings = settings

    logger.info("creating db")
    init_db(settings.database_path)
    seed_roles(settings.database_path)
    app.state.storage = get_file_storage(settings)

    app.include_router(auth_router, tags=["auth"])
    app.include_router(documents_router, tags=["documents"])
    app.include_router(health_router, tags=["health"])

    app.add_exception_handler(
        exc_class_or_status_code=StorageError,
        handler=handle_storage_errors,
    )
    app.add_exception_handler(
        exc_class_or_status_code=pydantic.ValidationError,
        handler=handle_pydantic_validation_errors,
    )
    app.middleware("http")(handle_broad_exceptions)

    return app


def custom_generate_unique_id(route: APIRoute):
    """
    Generate prettier `operationId`s in the OpenAPI schema.

    These become the function names in generated client SDKs.
    """
    return f"{route.tags[0]}-{route.name}"


if __name__ == "__main__":
    import uvicorn

    app = create_app()
    uvicorn.run(app, host="0.0.0.0", port=8000)
