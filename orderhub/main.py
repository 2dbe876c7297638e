import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI, status
from orderhub.core.db import init_db, close_db
from orderhub.api.v1.orders import router as orders_router
from orderhub.api.v1.inventory import router as inventory_router
from orderhub.api.v1.live import router as live_router
from orderhub.core.config import LOG_FORMAT, LOG_LEVEL, PROJECT_NAME, VERSION
from orderhub.core.exception_handlers import setup_exception_handlers
from orderhub.services.notifications import NotificationFanout

logging.basicConfig(level=LOG_LEVEL, format=LOG_FORMAT)
log = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Handles startup and shutdown events."""
    log.info(f"Starting {PROJECT_NAME} v{VERSION}...")
    await init_db() # Connect to DB and generate schemas
    yield
    await app.state.fanout.close()
    await close_db()
    log.info(f"{PROJECT_NAME} stopped.")

app = FastAPI(
    title=PROJECT_NAME,
    version=VERSION,
    lifespan=lifespan,
    # Configure API documentation and paths
    docs_url="/docs",
    redoc_url="/redoc"
)

# One fanout per process; websocket endpoints register into its registry
app.state.fanout = NotificationFanout()

# Include routers for modular API structure
app.include_router(orders_router, prefix="/api/v1/tenants/{tenant_id}", tags=["Order Lifecycle"])
app.include_router(inventory_router, prefix="/api/v1/tenants/{tenant_id}", tags=["Inventory"])
app.include_router(live_router, prefix="/ws/tenants/{tenant_id}", tags=["Live Orders"])


setup_exception_handlers(app)

@app.get("/health", status_code=status.HTTP_200_OK)
async def health_check():
    """Simple health check endpoint."""
    return {"status": "ok", "app_name": PROJECT_NAME}
