# latidos/main.py
import logging
from fastapi import FastAPI
from contextlib import asynccontextmanager

from latidos.config.settings import settings
from latidos.config.database import engine
from latidos.core.middleware import setup_middleware
from latidos.api.v1.router import api_router
from latidos.shared.database.models import Base

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s"
)
logger = logging.getLogger(__name__)

@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    logger.info(f"🚀 {settings.app_name} Starting...")
    logger.info(f"📍 Version: {settings.version}")
    logger.info(f"🌍 Environment: {'Development' if settings.debug else 'Production'}")
    logger.info(
        f"⏱️  Audit stream: poll {settings.audit_poll_interval_seconds}s, "
        f"max lifetime {settings.audit_stream_max_lifetime_seconds}s"
    )

    if settings.auto_create_tables:
        Base.metadata.create_all(bind=engine)
        logger.info("🗄️  Tables created")

    yield

    # Shutdown
    logger.info(f"🛑 {settings.app_name} Shutting down...")

# Create FastAPI app
app = FastAPI(
    title=settings.app_name,
    version=settings.version,
    description="Auditoría colaborativa de inventario para LATIDOS",
    docs_url="/docs",
    redoc_url="/redoc" if settings.debug else None,
    lifespan=lifespan
)

# Setup middleware
setup_middleware(app)

# Include routers
app.include_router(api_router, prefix="/api/v1")

# Root endpoint
@app.get("/")
async def root():
    return {
        "message": "🚀 LATIDOS API - Auditoría colaborativa de inventario",
        "version": settings.version,
        "status": "running",
        "environment": "production" if not settings.debug else "development",
        "docs": "/docs",
        "api": "/api/v1"
    }

@app.get("/health")
async def health_check():
    return {
        "status": "healthy",
        "version": settings.version,
        "app": settings.app_name,
        "environment": "production" if not settings.debug else "development"
    }

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "latidos.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug
    )
