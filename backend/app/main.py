from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from contextlib import asynccontextmanager
from app.api import configmaps, health, registries, orphaned_servers
from app.api.deps import build_services, create_cluster_store
from app.core.config import settings
from app.core.errors import RegistryManagerError
from app.db.session import AsyncSessionLocal, init_models
from app.services.sync_trigger import SyncScheduler
import logging

logging.basicConfig(
    level=settings.LOG_LEVEL.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Handle startup and shutdown events."""
    # Startup
    logger.info(f"{settings.PROJECT_NAME} starting up (cluster store: {settings.CLUSTER_STORE})...")
    if not hasattr(app.state, "services"):
        await init_models()
        app.state.services = build_services(create_cluster_store(), session_factory=AsyncSessionLocal)
    services = app.state.services

    try:
        await services.lifecycle.recover_all_interrupted()
    except RegistryManagerError as e:
        logger.warning(f"Could not recover interrupted syncs at startup: {e.message}")

    scheduler = None
    if settings.SYNC_SCHEDULER_ENABLED:
        scheduler = SyncScheduler(services.lifecycle)
        scheduler.start()
    yield
    # Shutdown
    logger.info(f"{settings.PROJECT_NAME} shutting down, cancelling in-flight syncs...")
    if scheduler is not None:
        await scheduler.stop()
    await services.lifecycle.shutdown()
    if services.github is not None:
        await services.github.close()
    logger.info("All syncs stopped")

app = FastAPI(
    title=settings.PROJECT_NAME,
    description="Admin API for MCP registries and the MCP servers they own",
    version="0.1.0",
    lifespan=lifespan
)

@app.exception_handler(RegistryManagerError)
async def registry_error_handler(request: Request, exc: RegistryManagerError):
    if exc.status_code >= 500:
        logger.error(f"[{type(exc).__name__}] on {request.url}: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content={"error": exc.message})

# Request validation failures are reported as 400 with the pydantic error list
@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    logger.info(f"[VALIDATION ERROR] on {request.url}: {exc.errors()}")
    return JSONResponse(
        status_code=400,
        content={"error": "Validation failed", "detail": jsonable_errors(exc)},
    )

def jsonable_errors(exc: RequestValidationError):
    return [
        {"loc": list(err.get("loc", ())), "msg": err.get("msg"), "type": err.get("type")}
        for err in exc.errors()
    ]

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(health.router, prefix="/api/health", tags=["health"])
app.include_router(registries.router, prefix=f"{settings.API_V1_STR}/registries", tags=["registries"])
app.include_router(orphaned_servers.router, prefix=f"{settings.API_V1_STR}/orphaned-servers", tags=["orphaned-servers"])
app.include_router(configmaps.router, prefix=f"{settings.API_V1_STR}/configmaps", tags=["configmaps"])
