"""OAuth redirect endpoint.

``GET /oauth2callback`` is where Google sends the browser after the consent
screen.  The query parameters are handed to the :class:`CallbackCorrelator`
and the browser always gets a terminal HTML page, whether or not a task was
waiting for the code.

Query parameters:
  code   : authorization code (success)
  state  : the state token embedded in the authorization URL
  error  : provider error (e.g. ``access_denied``)
"""

from __future__ import annotations

import logging
from html import escape

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import HTMLResponse

from workspace_auth.accounts.callback import CallbackCorrelator
from workspace_auth.config import DEFAULT_CALLBACK_PATH

logger = logging.getLogger(__name__)

router = APIRouter(tags=["oauth"])

_PAGE_TEMPLATE = """<!DOCTYPE html>
<html>
  <head><meta charset="utf-8"><title>{title}</title></head>
  <body>
    <h1>{title}</h1>
    <p>{message}</p>
  </body>
</html>
"""


def get_correlator(request: Request) -> CallbackCorrelator:
    return request.app.state.correlator


def _page(title: str, message: str, status_code: int) -> HTMLResponse:
    return HTMLResponse(
        _PAGE_TEMPLATE.format(title=escape(title), message=escape(message)),
        status_code=status_code,
    )


@router.get(DEFAULT_CALLBACK_PATH, response_class=HTMLResponse)
async def oauth_callback(
    code: str | None = Query(default=None),
    state: str | None = Query(default=None),
    error: str | None = Query(default=None),
    correlator: CallbackCorrelator = Depends(get_correlator),
) -> HTMLResponse:
    """Hand the redirect to the correlator and render the result page."""
    outcome = correlator.deliver(code=code, state=state, error=error)

    if error:
        return _page(
            "Authorization Failed",
            f"Authorization failed: {error}. You can close this window.",
            400,
        )
    if not code:
        return _page(
            "Authorization Failed",
            "No authorization code was received. You can close this window.",
            400,
        )

    if not outcome.matched:
        logger.info("Authorization code received with no waiting request")
    return _page(
        "Authorization Successful",
        "Authorization complete. You can close this window and return to your assistant.",
        200,
    )
