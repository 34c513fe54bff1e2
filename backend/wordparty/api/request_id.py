"""Request id lookup for error responses."""

from __future__ import annotations

from typing import Optional

from fastapi import Request

from wordparty.obs import logging as obs_logging


def get_request_id(request: Optional[Request] = None, default: str = "unknown") -> str:
	"""Return the request id bound by the observability middleware.

	Falls back to the inbound `X-Request-Id` header when the middleware is not
	installed (for example with observability disabled).
	"""
	rid = obs_logging.current_request_id()
	if not rid and request is not None:
		rid = request.headers.get("X-Request-Id")
	return rid or default
