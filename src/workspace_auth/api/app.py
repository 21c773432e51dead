"""FastAPI application factory for the OAuth callback server.

Routes:
- ``GET /oauth2callback``: provider redirect, see :mod:`.routers.oauth`
- ``GET /health``: liveness plus the number of pending authorizations
- ``GET /metrics``: Prometheus exposition
"""

from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from fastapi.responses import Response
from prometheus_client import CONTENT_TYPE_LATEST, REGISTRY, generate_latest

from workspace_auth import __version__
from workspace_auth.accounts.callback import CallbackCorrelator
from workspace_auth.api.models.oauth import HealthResponse
from workspace_auth.api.routers.oauth import router as oauth_router

logger = logging.getLogger(__name__)


def create_app(correlator: CallbackCorrelator) -> FastAPI:
    """Build the callback app bound to *correlator*."""
    app = FastAPI(title="Workspace Auth Callback", version=__version__)
    app.state.correlator = correlator
    app.include_router(oauth_router)

    @app.get("/health", response_model=HealthResponse)
    async def health(request: Request) -> HealthResponse:
        bound: CallbackCorrelator = request.app.state.correlator
        return HealthResponse(status="ok", pending_authorizations=bound.pending_count)

    @app.get("/metrics")
    async def metrics() -> Response:
        """Prometheus metrics endpoint."""
        return Response(content=generate_latest(REGISTRY), media_type=CONTENT_TYPE_LATEST)

    return app
