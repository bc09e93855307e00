import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool

from railpass.config import settings
from railpass.database import get_session_factory, init_db
from railpass.errors import StorageUnavailable
from railpass.users import router as users_router
from railpass.ledger import router as ledger_router
from railpass.schedules import router as schedules_router
from railpass.bookings import router as bookings_router
from railpass.bookings import ReservationCoordinator
from railpass.tickets import router as tickets_router

logger = logging.getLogger(__name__)


def configure_logging():
    logging.basicConfig(
        level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
        format='%(asctime)s - %(levelname)s - %(name)s - %(message)s'
    )


async def run_maintenance(interval: int):
    """Periodically finish interrupted bookings and expire abandoned holds"""

    coordinator = ReservationCoordinator(get_session_factory())
    while True:
        await asyncio.sleep(interval)
        try:
            await run_in_threadpool(coordinator.recover_stale_attempts)
        except Exception:
            logger.exception("Maintenance sweep failed")


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging()
    if settings.AUTO_CREATE_TABLES:
        init_db()

    task = None
    if settings.MAINTENANCE_INTERVAL_SECONDS > 0:
        task = asyncio.create_task(run_maintenance(settings.MAINTENANCE_INTERVAL_SECONDS))
    logger.info("%s started (%s)", settings.PROJECT_NAME, settings.ENVIRONMENT)

    yield

    if task:
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass


# Create FastAPI app
app = FastAPI(
    title=settings.PROJECT_NAME,
    version="1.0.0",
    description="Railway seat booking, wallet ledger and ticket verification API",
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan
)

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(StorageUnavailable)
async def storage_unavailable_handler(request: Request, exc: StorageUnavailable):
    logger.error("Storage unavailable on %s %s: %s", request.method, request.url.path, exc)
    return JSONResponse(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        content={"detail": {"code": "storage_unavailable", "message": "Service temporarily unavailable"}}
    )


# Include routers
app.include_router(
    users_router,
    prefix=f"{settings.API_V1_STR}/users",
    tags=["Users"]
)

app.include_router(
    ledger_router,
    prefix=f"{settings.API_V1_STR}/wallets",
    tags=["Wallets"]
)

app.include_router(
    schedules_router,
    prefix=f"{settings.API_V1_STR}/schedules",
    tags=["Trains & Schedules"]
)

app.include_router(
    bookings_router,
    prefix=f"{settings.API_V1_STR}/bookings",
    tags=["Bookings"]
)

app.include_router(
    tickets_router,
    prefix=f"{settings.API_V1_STR}/tickets",
    tags=["Tickets"]
)

@app.get("/")
def root():
    """Root endpoint"""
    return {
        "message": settings.PROJECT_NAME,
        "version": "1.0.0",
        "docs": "/docs"
    }

@app.get("/health")
def health_check():
    """Health check endpoint"""
    return {"status": "healthy"}

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
