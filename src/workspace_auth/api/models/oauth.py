"""Pydantic models for the callback server endpoints."""

from __future__ import annotations

from pydantic import BaseModel


class HealthResponse(BaseModel):
    """Liveness payload; also reports how many authorizations are in flight."""

    status: str = "ok"
    pending_authorizations: int = 0
