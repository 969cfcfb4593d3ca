# sealdesk/main.py

from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from sealdesk import __version__
from sealdesk.core.config import settings
from sealdesk.core.db import init_db
from sealdesk.core.exceptions import SealdeskBaseException
from sealdesk.utils.logger import setup_app_logging, get_logger
# Local application imports - Routes
from sealdesk.workflow.router import router as envelope_routes
from sealdesk.workflow.router import signing_router as signing_routes
from sealdesk.audit.router import router as audit_routes
from sealdesk.identity.router import router as identity_routes


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Make sure the schema exists before serving
    """
    init_db()
    yield


# Create the FastAPI app
app = FastAPI(
    title=f"{settings.app_name} - {settings.environment}",
    description="Envelope signing workflow engine",
    version=__version__,
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)

# Configure logging
setup_app_logging(
    app,
    log_level=settings.log_level,
    use_json=settings.log_json or settings.is_production,
    log_file=settings.log_file,
    app_name=settings.app_name,
    environment=settings.environment,
)
logger = get_logger(__name__)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_cors_urls.split(","),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(SealdeskBaseException)
async def sealdesk_exception_handler(request: Request, exc: SealdeskBaseException):
    """
    Turn domain errors into JSON with the status code they carry
    """
    logger.warning(
        "Request rejected",
        path=request.url.path, status_code=exc.status_code, error=exc.message, details=exc.details,
    )
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


# Include routers
app.include_router(envelope_routes)
app.include_router(signing_routes)
app.include_router(audit_routes)
app.include_router(identity_routes)


# Root API to check if the server is up
@app.get("/", tags=["Base"])
async def health_check():
    """
    Root API to check if the server is up
    """
    return {"status": "ok", "version": __version__}
