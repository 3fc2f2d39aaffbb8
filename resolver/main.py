from contextlib import asynccontextmanager

from fastapi import FastAPI
from resolver.config import settings
from resolver.database import create_tables

# Import API routers
from resolver.api.status import router as status_router


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Initialize database tables on startup."""
    create_tables()
    yield


# Create FastAPI app
app = FastAPI(
    title=settings.project_name,
    version="0.1.0",
    description="Off-chain resolution services for prediction markets",
    lifespan=lifespan
)

# Include API routers
app.include_router(status_router)


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "message": settings.project_name,
        "version": "0.1.0",
        "endpoints": {
            "health": "/health",
            "docs": "/docs",
            "status": f"{settings.api_v1_prefix}/status",
            "sync": f"{settings.api_v1_prefix}/markets/sync"
        }
    }


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy", "service": settings.project_name}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
