# booth_compositor/main.py
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager
from concurrent.futures import ThreadPoolExecutor
import threading
import logging
import os

from booth_compositor.config.settings import settings
from booth_compositor.delivery.api.compositor import router
from booth_compositor.domain.composite_service import CompositeService
from booth_compositor.domain.region_map import RegionMap

logging.getLogger("cloudinary").setLevel(logging.WARNING)
logger = logging.getLogger("uvicorn.error")

# --- Lazy service bootstrap state ---
_service_lock = threading.Lock()
_service_ready = False

def _ensure_service(app: FastAPI) -> None:
    global _service_ready
    with _service_lock:  # Always acquire lock first
        if _service_ready:
            return
        logger.info(f"Loading region map from {settings.REGION_MAP_PATH} (lazy-init)...")
        region_map = RegionMap.load(settings.REGION_MAP_PATH)
        app.state.composite_service = CompositeService(
            region_map=region_map,
            cpu_executor=app.state.cpu_executor,
            io_executor=app.state.io_executor,
        )
        _service_ready = True
        logger.info("Composite service ready.")

@asynccontextmanager
async def lifespan(app: FastAPI):
    # capture attempts are memory heavy; keep the CPU pool small
    max_workers = min(2, os.cpu_count() or 1)
    app.state.cpu_executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="composite")
    app.state.io_executor = ThreadPoolExecutor(max_workers=4, thread_name_prefix="upload")
    logger.info(f"Service '{settings.PROJECT_NAME}' started (mode: {settings.ENVIRONMENT}).")
    logger.info(f"CPU executor created with {max_workers} workers.")
    yield
    logger.info("Shutting down executors...")
    app.state.cpu_executor.shutdown(wait=True)
    app.state.io_executor.shutdown(wait=True)
    logger.info("Service stopped.")

app = FastAPI(
    title="Photo Booth Compositor",
    description="Places captured photos into frame templates and exports print and delivery resolutions",
    version="1.0.0",
    lifespan=lifespan,
    docs_url="/docs" if settings.ENVIRONMENT != "production" else None,
    redoc_url="/redoc" if settings.ENVIRONMENT != "production" else None,
)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.ALLOWED_HOSTS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Lazy-load only for API routes
@app.middleware("http")
async def lazy_boot(request: Request, call_next):
    if request.url.path.startswith(settings.API_V1_STR):
        _ensure_service(request.app)
    return await call_next(request)

app.include_router(router, prefix=settings.API_V1_STR)

@app.get("/")
async def root():
    return {"message": "Photo Booth Compositor", "version": "1.0.0", "status": "ok"}

@app.get("/health")
async def health_check():
    return {"status": "ok", "service": "Booth Compositor 1.0", "region_map_loaded": _service_ready}
