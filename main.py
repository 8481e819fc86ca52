"""
BloomFundr FastAPI Application

Entry point for the fundraiser payment back office: order settlement,
Stripe webhooks and payout administration.
"""

import os
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from dotenv import load_dotenv
import logging

# Load environment variables
load_dotenv()

# Configure logging
logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO"),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

from bloomfundr.routers import payments, payouts, webhooks  # noqa: E402

# Create FastAPI app
app = FastAPI(
    title="BloomFundr API",
    description="Fundraiser order settlement and florist/organization payouts",
    version="1.0.0"
)

# CORS configuration (allow dashboards to call API)
ALLOWED_ORIGINS = os.getenv("ALLOWED_ORIGINS", "http://localhost:5173").split(",")
app.add_middleware(
    CORSMiddleware,
    allow_origins=ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(payments.router)
app.include_router(webhooks.router)
app.include_router(payouts.router)


# ============================================
# Health Check Endpoint
# ============================================

@app.get("/health")
async def health_check():
    """
    Health check endpoint for monitoring.

    Returns server status and basic info.
    """
    return {
        "status": "healthy",
        "service": "BloomFundr API",
        "version": "1.0.0",
        "environment": os.getenv("APP_ENV", "development")
    }


@app.get("/")
async def root():
    """Root endpoint with API information."""
    return {
        "message": "Welcome to BloomFundr API",
        "documentation": "/docs",
        "health": "/health"
    }


# ============================================
# Run Server (Development Only)
# ============================================

if __name__ == "__main__":
    import uvicorn

    port = int(os.getenv("APP_PORT", 8000))
    host = os.getenv("APP_HOST", "0.0.0.0")

    logger.info(f"Starting server on {host}:{port}")

    uvicorn.run(
        "main:app",
        host=host,
        port=port,
        reload=True,  # Auto-reload on code changes (dev only!)
        log_level="info"
    )
