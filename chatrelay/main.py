"""FastAPI application entry point."""
import logging
import logging.handlers
import time

from fastapi import FastAPI, Request

from chatrelay import __version__
from chatrelay.core.config import settings
from chatrelay.services.gateway.api import router as gateway_router
from chatrelay.services.gateway.audit import build_audit_recorder
from chatrelay.services.gateway.reporting import LoggingUsageReporter
from chatrelay.services.gateway.transport import ProxyAwareClientFactory

LOG_MAX_BYTES = 10 * 1024 * 1024  # 10MB
LOG_BACKUP_COUNT = 5  # Keep 5 backup files


def configure_logging() -> None:
    """Console logging, plus a rotating file when LOG_FILE is set."""
    formatter = logging.Formatter(
        "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S"
    )
    root_logger = logging.getLogger()
    root_logger.setLevel(settings.LOG_LEVEL.upper())

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    if settings.LOG_FILE:
        file_handler = logging.handlers.RotatingFileHandler(
            settings.LOG_FILE,
            maxBytes=LOG_MAX_BYTES,
            backupCount=LOG_BACKUP_COUNT,
            encoding="utf-8"
        )
        file_handler.setFormatter(formatter)
        root_logger.addHandler(file_handler)

    # Upstream traffic is only logged when the audit recorder is enabled
    logging.getLogger("chatrelay.audit").setLevel(logging.DEBUG if settings.REQUEST_LOG else logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)


configure_logging()
logger = logging.getLogger(__name__)
logger.info(f"Logging configured. Level: {settings.LOG_LEVEL}, log file: {settings.LOG_FILE or 'none'}")

app = FastAPI(
    title=settings.APP_NAME,
    description="OpenAI-compatible gateway for heterogeneous upstream providers",
    version=__version__,
    docs_url="/docs",
    redoc_url="/redoc",
)

app.state.client_factory = ProxyAwareClientFactory(settings)
app.state.reporter = LoggingUsageReporter()
app.state.audit = build_audit_recorder(settings.REQUEST_LOG)

app.include_router(gateway_router)


@app.on_event("shutdown")
async def shutdown_event():
    """Close shared upstream HTTP clients."""
    await app.state.client_factory.aclose()
    logger.info("Upstream HTTP clients closed")


# Request logging middleware
@app.middleware("http")
async def log_requests(request: Request, call_next):
    """Log all incoming requests."""
    start_time = time.time()
    logger.info(f"Request: {request.method} {request.url.path}")

    response = await call_next(request)

    process_time = time.time() - start_time
    logger.info(f"Response: {request.method} {request.url.path} - {response.status_code} ({process_time:.3f}s)")
    return response


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "service": settings.APP_NAME,
        "version": __version__,
        "docs": "/docs",
        "health": "/health"
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "chatrelay.main:app",
        host="0.0.0.0",
        port=8000,
        reload=False,
        log_level=settings.LOG_LEVEL.lower()
    )
