"""
FastAPI application entry point.
"""

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from app.config import settings
from app.middleware.logging import RequestLoggingMiddleware
from app.api import debug, slack
from app.services.container import build_services
from app.utils.logging import setup_logging, get_logger

# Configure structured logging
setup_logging(settings.log_level)

logger = get_logger(__name__)

VERSION = "0.1.0"

# Create FastAPI application
app = FastAPI(
    title="n8n Debug Agent",
    description="Analyzes failing n8n workflows and applies human-approved fixes",
    version=VERSION
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Add request logging middleware
app.add_middleware(RequestLoggingMiddleware)


@app.get("/health")
async def health_check():
    """Health check endpoint for container orchestration."""
    services = getattr(app.state, "services", None)
    return {
        "status": "healthy",
        "version": VERSION,
        "pending_approvals": len(services.store.get_pending()) if services else 0,
        "slack_enabled": services.notifier.enabled if services else False,
    }


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "message": "n8n Debug Agent API",
        "version": VERSION,
        "docs": "/docs"
    }


# Include API routers
app.include_router(debug.router)
app.include_router(slack.router)


@app.on_event("startup")
async def startup_event():
    """Initialize services on application startup."""
    logger.info("Starting n8n Debug Agent API", extra={"environment": settings.environment})

    services = build_services(settings)
    services.start()
    app.state.services = services
    logger.info("Services initialized")


@app.on_event("shutdown")
async def shutdown_event():
    """Cleanup services on application shutdown."""
    logger.info("Shutting down n8n Debug Agent API")

    services = getattr(app.state, "services", None)
    if services is not None:
        await services.shutdown()
        app.state.services = None


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
