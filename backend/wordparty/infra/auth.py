"""Authentication helpers for FastAPI endpoints.

Sessions are issued by the external identity provider as HS256 JWTs. In
development, simple `X-User-Id` headers are accepted for local tools.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from fastapi import Depends, Header, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from wordparty.infra import jwt as jwt_helper
from wordparty.settings import settings


@dataclass(slots=True)
class AuthenticatedUser:
	id: str
	username: Optional[str] = None
	session_id: Optional[str] = None
	access_token: Optional[str] = None


_bearer_scheme = HTTPBearer(auto_error=False)


def verify_access_jwt(token: str) -> AuthenticatedUser:
	"""Decode and validate an access JWT and return an AuthenticatedUser."""
	try:
		payload = jwt_helper.decode_access(token)
	except Exception:
		raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="invalid_token")

	sub = str(payload.get("sub") or "").strip()
	if not sub:
		raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="invalid_token")
	username = payload.get("username") or payload.get("name")
	session_id = payload.get("sid")
	return AuthenticatedUser(
		id=sub,
		username=str(username) if username is not None else None,
		session_id=str(session_id) if session_id is not None else None,
		access_token=token,
	)


async def get_current_user(
	x_user_id: Optional[str] = Header(default=None, alias="X-User-Id"),
	x_username: Optional[str] = Header(default=None, alias="X-Username"),
	credentials: Optional[HTTPAuthorizationCredentials] = Depends(_bearer_scheme),
) -> AuthenticatedUser:
	"""Resolve the authenticated user.

	In development we allow simple headers. In all other environments, headers are
	ignored and a valid Bearer JWT is required.
	"""
	if credentials and credentials.scheme.lower() == "bearer":
		return verify_access_jwt(credentials.credentials)

	if settings.is_dev() and x_user_id:
		return AuthenticatedUser(id=x_user_id, username=x_username)

	raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="invalid_token")
