"""Health check endpoint."""

from fastapi import APIRouter

router = APIRouter()


@router.get("/health")
async def health():
    """Liveness check for the hosting platform."""
    return {"status": "ok"}
