"""Health check endpoint."""

from __future__ import annotations

from fastapi import APIRouter, Request

from xobcat import __version__

router = APIRouter(prefix="/api")


@router.get("/health")
def health(request: Request) -> dict[str, str | int]:
    """Return server status, version, and number of known analyses."""
    return {
        "status": "ok",
        "version": __version__,
        "analyses": len(request.app.state.manager),
    }
