"""
Mercado Checkout - Backend API
Cálculo de precios y cobro de pedidos del marketplace (Datafast / DeUna)
"""
import logging
import time
from pathlib import Path

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from dotenv import load_dotenv

# Load environment variables
env_path = Path(__file__).parent.parent / '.env'
load_dotenv(env_path)

from app.api import pricing, checkout, deuna, orders
from app.core.config import settings

# Import centralized database connection with retry logic
from app.core.database import get_db_connection_with_retry, CONNECTION_TIMEOUT

logging.basicConfig(
    level=logging.DEBUG if settings.API_DEBUG else logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

ALLOWED_ORIGINS = settings.get_allowed_origins()

# Crear aplicación FastAPI
app = FastAPI(
    title=settings.API_TITLE,
    version=settings.API_VERSION,
    description=settings.API_DESCRIPTION,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["*"],
)

# Include API routers
app.include_router(pricing.router, prefix="/api/v1/pricing", tags=["Pricing"])
app.include_router(checkout.router, prefix="/api/v1/checkout", tags=["Checkout"])
app.include_router(deuna.payments_router, prefix="/api/v1/payments", tags=["Payments"])
app.include_router(deuna.webhooks_router, prefix="/api/v1/webhooks", tags=["Webhooks"])
app.include_router(orders.router, prefix="/api/v1/orders", tags=["Orders"])


@app.get("/")
async def root():
    """Endpoint raíz - Verificación de estado de la API"""
    return {
        "message": "Mercado Checkout API",
        "status": "online",
        "version": settings.API_VERSION,
        "description": settings.API_DESCRIPTION,
    }


@app.get("/health")
async def health():
    """Health check endpoint para monitoreo - tests database connectivity"""
    start_time = time.time()

    db_status = "unknown"
    db_latency_ms = None
    db_error = None

    try:
        # Minimal retry (fast check)
        conn = get_db_connection_with_retry(max_retries=1, retry_delay=0.5)
        cursor = conn.cursor()

        db_start = time.time()
        cursor.execute("SELECT 1")
        cursor.fetchone()
        db_latency_ms = round((time.time() - db_start) * 1000, 2)

        cursor.close()
        conn.close()
        db_status = "connected"
    except Exception as e:
        db_status = "disconnected"
        db_error = str(e)

    total_latency_ms = round((time.time() - start_time) * 1000, 2)

    return {
        "status": "healthy" if db_status == "connected" else "degraded",
        "service": "mercado-checkout-api",
        "version": settings.API_VERSION,
        "database": {
            "status": db_status,
            "latency_ms": db_latency_ms,
            "error": db_error,
            "connection_timeout_s": CONNECTION_TIMEOUT,
        },
        "gateways": {
            "datafast": bool(settings.DATAFAST_ENTITY_ID and settings.DATAFAST_AUTHORIZATION),
            "deuna": bool(settings.DEUNA_API_KEY and settings.DEUNA_API_SECRET),
        },
        "total_latency_ms": total_latency_ms,
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("app.main:app", host=settings.API_HOST, port=settings.API_PORT, reload=settings.API_DEBUG)
