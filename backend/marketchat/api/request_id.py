"""Request ID helper for endpoints.

The request id is stored on request.state by RequestIdMiddleware and bound into
the logging context by the observability middleware. Either source is accepted
so error handlers work no matter which middleware ran first.
"""

from __future__ import annotations

from typing import Optional

from fastapi import Request

from marketchat.obs import logging as obs_logging

REQUEST_ID_ATTR = "request_id"


def get_request_id(request: Optional[Request] = None, default: str = "unknown") -> str:
    """Return the current request id if known, else a default."""
    if request is not None:
        rid = getattr(request.state, REQUEST_ID_ATTR, None) or request.headers.get("X-Request-Id")
        if rid:
            return rid
    return obs_logging.current_request_id() or default
