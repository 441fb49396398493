# WORKFLOW: Authentication middleware for JWT and API key validation.
# Used by: api/main.py, protecting sync mutations (POST {api_v1_prefix}/sync/*)
# Functions:
# 1. _is_protected_endpoint() - Check if the request mutates the local tariff mirror
# 2. _extract_token() - Extract bearer JWT or X-API-Key from request headers
# 3. _validate_token() - Validate JWT or API key and return the caller payload
#
# Auth flow: Request -> Protected? -> Extract token -> Validate -> request.state.user -> Continue
# Rejected requests get a 401 JSON response; read endpoints stay public.

from fastapi import Request, status
from fastapi.responses import JSONResponse
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp
import jwt
import logging
from typing import Optional
from core.config import settings

logger = logging.getLogger(__name__)

security = HTTPBearer(auto_error=False)

API_KEY_SUBJECT = "api_key"


class AuthenticationError(Exception):
    """Token missing, expired or invalid."""


class AuthMiddleware(BaseHTTPMiddleware):
    """Authentication middleware for JWT and API key validation."""

    def __init__(self, app: ASGIApp):
        super().__init__(app)

    async def dispatch(self, request: Request, call_next):
        if not self._is_protected_endpoint(request.method, request.url.path):
            return await call_next(request)

        token = await self._extract_token(request)
        if not token:
            return self._unauthorized("Authentication required")

        try:
            request.state.user = self._validate_token(token)
        except AuthenticationError as e:
            logger.warning(f"Token validation failed for {request.url.path}: {e}")
            return self._unauthorized(str(e))

        return await call_next(request)

    def _is_protected_endpoint(self, method: str, path: str) -> bool:
        """Only sync mutations require a caller identity."""
        return method == "POST" and path.startswith(f"{settings.api_v1_prefix}/sync/")

    async def _extract_token(self, request: Request) -> Optional[str]:
        """Extract token from request headers."""
        credentials: Optional[HTTPAuthorizationCredentials] = await security(request)
        if credentials:
            return credentials.credentials
        return request.headers.get("X-API-Key")

    def _validate_token(self, token: str) -> dict:
        """Accept a configured API key or a JWT signed with settings.secret_key."""
        if token in settings.api_keys:
            return {"sub": API_KEY_SUBJECT}
        try:
            return jwt.decode(token, settings.secret_key, algorithms=[settings.algorithm])
        except jwt.ExpiredSignatureError:
            raise AuthenticationError("Token has expired")
        except jwt.InvalidTokenError as e:
            raise AuthenticationError(f"Invalid token: {e}")

    @staticmethod
    def _unauthorized(detail: str) -> JSONResponse:
        return JSONResponse(
            status_code=status.HTTP_401_UNAUTHORIZED,
            content={"detail": detail},
            headers={"WWW-Authenticate": "Bearer"},
        )
