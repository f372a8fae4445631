"""Authentication middleware for JWT verification."""

import logging
from collections.abc import Callable

import jwt
from fastapi import HTTPException, Request, Response, WebSocket
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import JSONResponse

from ..config import settings
from ..telemetry import TelemetryEvents, track_event, update_request_context

logger = logging.getLogger(__name__)


class AuthMiddleware(BaseHTTPMiddleware):
    """Middleware that authenticates requests with a bearer JWT.

    Sets on request.state:
    - user_id: User identifier from the JWT 'sub' claim (or the dev user when
      auth is disabled)
    """

    # Paths that don't require authentication
    PUBLIC_PATHS = [
        "/",
        "/health",
        "/version",
        "/docs",
        "/redoc",
        "/openapi.json",
    ]

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        """Process request through authentication."""
        # Skip auth for public endpoints
        if request.url.path in self.PUBLIC_PATHS:
            return await call_next(request)

        # Skip auth if not required (dev mode)
        if not settings.auth_required:
            request.state.user_id = settings.dev_user_id
            update_request_context(user_id=request.state.user_id)
            logger.debug(f"Auth disabled - using dev user_id={request.state.user_id}")
            return await call_next(request)

        try:
            user_id = self._verify_jwt(request)
        except HTTPException as e:
            track_event(
                TelemetryEvents.AUTHENTICATION_ERROR,
                {"endpoint": request.url.path, "detail": e.detail},
            )
            return JSONResponse(status_code=e.status_code, content={"detail": e.detail})
        except Exception as e:
            logger.error(f"Authentication error: {e}", exc_info=True)
            return JSONResponse(status_code=401, content={"detail": "Authentication failed"})

        request.state.user_id = user_id
        update_request_context(user_id=user_id)

        logger.debug(f"Authenticated request: user_id={user_id}")
        return await call_next(request)

    @staticmethod
    def _verification_key() -> str:
        if settings.jwt_algorithm == "HS256":
            return settings.secret_key
        if not settings.jwt_public_key:
            raise HTTPException(
                status_code=500,
                detail=f"JWT public key not configured for {settings.jwt_algorithm}",
            )
        return settings.jwt_public_key

    def _verify_jwt(self, request: Request) -> str:
        """Verify JWT and return user_id.

        Raises:
            HTTPException: If JWT missing, invalid, or expired
        """
        auth_header = request.headers.get("Authorization")
        if not auth_header or not auth_header.startswith("Bearer "):
            raise HTTPException(
                status_code=401,
                detail="Missing or invalid Authorization header (expected: Bearer <token>)",
            )

        return self.user_id_from_token(auth_header.split(" ", 1)[1])

    @classmethod
    def user_id_from_token(cls, token: str) -> str:
        """Decode a bearer JWT and return its 'sub' claim.

        Raises:
            HTTPException: If the JWT is invalid, expired, or has no subject
        """
        try:
            payload = jwt.decode(
                token,
                cls._verification_key(),
                algorithms=[settings.jwt_algorithm],
                audience=settings.jwt_audience,
                issuer=settings.jwt_issuer,
                options={"verify_aud": settings.jwt_audience is not None},
            )
        except jwt.ExpiredSignatureError:
            raise HTTPException(status_code=401, detail="JWT expired")
        except jwt.InvalidTokenError as e:
            raise HTTPException(status_code=401, detail=f"Invalid JWT: {str(e)}")

        # Extract user_id from 'sub' claim
        user_id = payload.get("sub")
        if not user_id:
            raise HTTPException(status_code=401, detail="JWT missing 'sub' claim (user_id)")

        return user_id


def authenticate_websocket(websocket: WebSocket) -> str:
    """Resolve the user of a websocket connection.

    BaseHTTPMiddleware does not see websocket handshakes, so websocket routes
    call this themselves. Browsers cannot set headers on a websocket
    handshake, so the token may also be passed as the ``token`` query
    parameter.

    Raises:
        HTTPException: If the token is missing, invalid, or expired
    """
    if not settings.auth_required:
        return settings.dev_user_id

    token = websocket.query_params.get("token")
    auth_header = websocket.headers.get("Authorization")
    if auth_header and auth_header.startswith("Bearer "):
        token = auth_header.split(" ", 1)[1]
    if not token:
        raise HTTPException(status_code=401, detail="Missing bearer token")

    return AuthMiddleware.user_id_from_token(token)
