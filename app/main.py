# app/main.py
from fastapi import FastAPI
from app.core.config import settings
from app.api.endpoints import generate, x402
from app.x402.middleware import X402Middleware
import logging

# Configure basic logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

app = FastAPI(
    title=settings.PROJECT_NAME,
    openapi_url=f"{settings.API_V1_STR}/openapi.json" # Standard location for OpenAPI spec
)

# Payment gate for protected endpoints (see PROTECTED_ENDPOINTS)
app.add_middleware(X402Middleware)

# The prefix ensures all routes start with /api/v1
app.include_router(x402.router, prefix=f"{settings.API_V1_STR}/x402", tags=["x402"])
app.include_router(generate.router, prefix=f"{settings.API_V1_STR}/generate", tags=["generate"])

@app.get("/", summary="Health Check", tags=["default"])
def read_root():
    """ Basic health check endpoint. """
    logger.info("Root endpoint '/' accessed.")
    return {"status": "ok", "message": f"Welcome to {settings.PROJECT_NAME}"}
