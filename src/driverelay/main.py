"""Main application entrypoint for the Drive relay."""

import os

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from driverelay.api.middleware import HTTPErrorLoggingMiddleware, register_error_handlers
from driverelay.api.v1 import routes_health
from driverelay.api.v1.routes_proxy import router as proxy_router
from driverelay.api.v1.routes_upload import router as upload_router
from driverelay.core.config import settings
from driverelay.core.logging import setup_logging


def create_app() -> FastAPI:
    """Create and configure the FastAPI application.

    Returns:
        FastAPI: Configured FastAPI application instance
    """
    # Initialize logging first
    setup_logging()

    app = FastAPI(
        title=settings.SERVICE_NAME,
        version=settings.SERVICE_VERSION,
    )

    register_error_handlers(app)

    # Added last so preflight requests are answered before anything else runs
    app.add_middleware(HTTPErrorLoggingMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["*"],
    )

    app.include_router(routes_health.router, tags=["health"])
    app.include_router(upload_router)
    app.include_router(proxy_router)

    return app


# Export app instance for ASGI servers
app = create_app()


if __name__ == "__main__":
    import uvicorn

    port = int(os.getenv("PORT", "8080"))
    uvicorn.run(app, host="0.0.0.0", port=port)
