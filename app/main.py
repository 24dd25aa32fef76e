"""Main FastAPI application."""
import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.config import settings
from app.middleware import setup_rate_limiting
from app.pos import routes as pos_routes
from app.pos.dependencies import build_pos_client
from app.pos.errors import PosIntegrationError

logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

# Create FastAPI app
app = FastAPI(
    title="Lounge POS Sync API",
    description="ready2order integration and inventory synchronization",
    version="0.1.0",
)

# Shared by every tenant: the provider budget is per application credential
app.state.pos_client = build_pos_client()

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

setup_rate_limiting(app)


@app.exception_handler(PosIntegrationError)
async def pos_integration_error_handler(request: Request, exc: PosIntegrationError):
    """Translate domain errors into JSON without leaking provider details."""
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail})


# Include routers
app.include_router(pos_routes.router, prefix=f"{settings.API_V1_PREFIX}/pos", tags=["POS"])


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy"}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "app.main:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
    )
