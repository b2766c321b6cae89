from __future__ import annotations

from fastapi import APIRouter

router = APIRouter(tags=["health"])

HEALTH_PAYLOAD = {"success": True, "message": "Server is running"}


@router.get("/health")
def health():
    # Liveness only; the database is checked once at process start.
    return dict(HEALTH_PAYLOAD)
