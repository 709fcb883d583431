import logging
import time
from typing import Optional, Dict, Any
from fastapi import Request
from bakery_api.core.exceptions import AuthenticationError
from bakery_api.core.security import get_bearer_token, validate_jwt_token

logger = logging.getLogger(__name__)

PUBLIC_PATHS = ['/docs', '/redoc', '/openapi.json', '/health']

class SessionContext:
    """Session context built from the claims of a verified JWT"""
    def __init__(self, claims: Optional[Dict[str, Any]] = None, error: Optional[str] = None):
        if claims:
            self.user_id = claims['sub']
            self.bakery_id = claims.get('bakeryId')
            self.role = claims.get('role')
            self.email = claims.get('email')
            self.is_valid = True
        else:
            self.user_id = None
            self.bakery_id = None
            self.role = None
            self.email = None
            self.is_valid = False
        self.error = error

    def to_dict(self) -> Dict[str, Any]:
        return {
            'user_id': self.user_id,
            'bakery_id': self.bakery_id,
            'role': self.role,
            'email': self.email,
            'is_valid': self.is_valid
        }

async def session_validation_middleware(request: Request, call_next):
    """
    Decode the bearer token for protected endpoints
    Sets request.state.session_context for use in endpoints
    """
    path = request.url.path
    if path == '/' or any(path.startswith(endpoint) for endpoint in PUBLIC_PATHS):
        request.state.session_context = SessionContext()
        return await call_next(request)

    token = get_bearer_token(request)
    if not token:
        request.state.session_context = SessionContext(error="Authorization token required")
        return await call_next(request)

    try:
        claims = validate_jwt_token(token)
        request.state.session_context = SessionContext(claims)
    except AuthenticationError as e:
        logger.warning(f"🔒 Rejected token on {request.method} {path}: {e.message}")
        request.state.session_context = SessionContext(error=e.message)

    return await call_next(request)

def get_session_context(request: Request) -> SessionContext:
    return getattr(request.state, 'session_context', SessionContext())

def require_valid_session(request: Request) -> SessionContext:
    """
    Helper function that raises error if no valid session context
    """
    session_context = get_session_context(request)
    if not session_context.is_valid:
        raise AuthenticationError(session_context.error or "Valid session required")
    return session_context

async def request_logging_middleware(request: Request, call_next):
    """
    Logs every call with status, duration, bakery and user
    """
    start_time = time.time()
    response = await call_next(request)
    duration = round((time.time() - start_time) * 1000, 2)  # milliseconds

    session_context = getattr(request.state, 'session_context', None)
    user_id = getattr(session_context, 'user_id', None) or 'anonymous'
    bakery_id = request.path_params.get('bakery_id', '-')
    logger.info(f"API {request.method} {request.url.path} | {response.status_code} | {duration}ms | {bakery_id} | {user_id}")

    return response
