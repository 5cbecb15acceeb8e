import logging

from fastapi import FastAPI

from core.database import engine, Base

# Import all models to register them
from models.order_container import OrderContainer, OrderContainerHbl
from models.destuffing_plan import DestuffingPlan, DestuffingPlanContainer, DestuffingPlanHbl

# Import routers
from api import destuffing_plans

# Create database tables
Base.metadata.create_all(bind=engine)

# Initialize FastAPI app
app = FastAPI(
    title="Destuffing Plan Console",
    description="Destuffing plan container reconciliation and lifecycle service",
    version="1.0.0"
)

log = logging.getLogger(__name__)

# Register routers
app.include_router(destuffing_plans.router, prefix="/api")
app.include_router(destuffing_plans.order_containers_router, prefix="/api")


# ==================== HEALTH CHECK ====================
@app.get("/health")
def health_check():
    """Health check endpoint for Docker and Kubernetes."""
    return {
        "status": "healthy",
        "service": "Destuffing Plan Console",
        "version": "1.0.0"
    }


# ==================== API: HEALTH CHECK ====================
@app.get("/api/health")
def api_health():
    """API health check endpoint."""
    return {
        "status": "operational",
        "version": "1.0.0",
        "service": "Destuffing Plan Console"
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
