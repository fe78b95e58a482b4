"""Health check endpoints for load balancers and monitoring."""

from fastapi import APIRouter, status
from fastapi.responses import JSONResponse
from sqlalchemy import text

from factorchain.chain.wallet import provider_for
from factorchain.config import settings
from factorchain.database import engine, utcnow

router = APIRouter(tags=["health"])


@router.get("/health")
async def health_check():
    """Lightweight health check (no database or RPC round trip)."""
    return {
        "status": "ok",
        "service": "FactorChain",
        "timestamp": utcnow().isoformat(),
        "environment": settings.environment,
    }


@router.get("/health/ready")
async def readiness_check():
    """Readiness check: database and chain RPC must both answer.

    Returns 503 with per-dependency detail when either is down.
    """
    checks = {
        "service": "ok",
        "database": "unknown",
        "chain": "unknown",
    }
    overall_healthy = True

    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        checks["database"] = "ok"
    except Exception as e:
        checks["database"] = f"error: {str(e)[:100]}"
        overall_healthy = False

    provider = provider_for(settings.rpc_url)
    if provider is None:
        checks["chain"] = "not configured"
        overall_healthy = False
    else:
        try:
            connected = await provider.is_connected()
            checks["chain"] = "ok" if connected else "unreachable"
            overall_healthy = overall_healthy and connected
        except Exception as e:
            checks["chain"] = f"error: {str(e)[:100]}"
            overall_healthy = False

    return JSONResponse(
        status_code=status.HTTP_200_OK if overall_healthy else status.HTTP_503_SERVICE_UNAVAILABLE,
        content={
            "status": "healthy" if overall_healthy else "unhealthy",
            "service": "FactorChain",
            "checks": checks,
            "timestamp": utcnow().isoformat(),
        },
    )
