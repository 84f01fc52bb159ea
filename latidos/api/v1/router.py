# latidos/api/v1/router.py
from fastapi import APIRouter
from latidos.config.settings import settings
from latidos.modules.audit.router import router as audit_router


# Crear router principal de la API v1
api_router = APIRouter()

api_router.include_router(
    audit_router,
    prefix="/audit",
    tags=["Inventory Audit"]
)

@api_router.get("/")
async def api_root():
    """Root endpoint de la API"""
    return {
        "message": "LATIDOS API v1",
        "version": settings.version,
        "status": "active",
        "docs": "/docs",
        "available_endpoints": {
            "audit": "/api/v1/audit"
        }
    }

@api_router.get("/health")
async def health_check():
    """Health check endpoint"""
    return {
        "status": "healthy",
        "service": settings.app_name,
        "version": settings.version,
        "modules": {
            "audit": {
                "status": "active",
                "features": ["Sync", "SSE stream", "Reset", "Finalize", "History"]
            }
        }
    }
