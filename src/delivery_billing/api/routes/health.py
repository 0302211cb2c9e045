"""Health endpoints."""

from __future__ import annotations

from fastapi import APIRouter, HTTPException, status

router = APIRouter(tags=["health"])


@router.get("/health", status_code=status.HTTP_200_OK)
def health_root() -> dict:
    """Simple health check endpoint that doesn't require any dependencies."""
    return {"status": "ok"}


def _get_routing_health_check():
    """Lazy import to avoid startup failures."""
    from ...services.distance.google_client import check_health as routing_health_check
    return routing_health_check


@router.get("/health/routing", status_code=status.HTTP_200_OK)
def health_routing() -> dict:
    """Report whether the distance provider is configured."""
    routing_health_check = _get_routing_health_check()
    if not routing_health_check():
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Routing provider not configured. Set BILLING_GOOGLE_MAPS_API_KEY.",
        )
    return {"service": "google_distance_matrix", "healthy": True}


@router.get("/health/database", status_code=status.HTTP_200_OK)
def check_database() -> dict:
    """Check database connection and uploads table."""
    from ...db.supabase import get_supabase_client

    supabase = get_supabase_client()
    if not supabase:
        return {
            "configured": False,
            "message": "Supabase not configured. Set BILLING_SUPABASE_URL and BILLING_SUPABASE_KEY environment variables.",
        }

    try:
        response = supabase.table("uploads").select("id").limit(1).execute()
        return {
            "configured": True,
            "connected": True,
            "message": f"Database connected. Uploads table reachable ({len(response.data or [])} sample rows).",
        }
    except Exception as exc:
        return {
            "configured": True,
            "connected": False,
            "error": str(exc),
            "message": f"Database connection error: {exc}",
        }
