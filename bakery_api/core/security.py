import jwt
import logging
from fastapi import Request
from typing import Optional
from bakery_api.config import settings
from bakery_api.core.exceptions import AuthenticationError, ForbiddenError

logger = logging.getLogger(__name__)

SYSTEM_ADMIN = "system_admin"
BAKERY_ROLES = ("bakery_staff", "bakery_admin", SYSTEM_ADMIN)

def get_bearer_token(request: Request) -> Optional[str]:
    """Extract the token from an `Authorization: Bearer <token>` header"""
    authorization = request.headers.get("authorization", "")
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()

def validate_jwt_token(token: str) -> dict:
    """Validate a JWT issued by the auth service and return its claims"""
    try:
        payload = jwt.decode(
            token,
            settings.jwt_secret,
            algorithms=[settings.jwt_algorithm],
            options={"require": ["sub"]}
        )
        return payload
    except jwt.ExpiredSignatureError:
        raise AuthenticationError("Token expired")
    except jwt.InvalidTokenError:
        raise AuthenticationError("Invalid token")

def require_bakery_access(role: Optional[str], user_bakery_id: Optional[str], bakery_id: str) -> None:
    """
    Staff may only work on their own bakery; system admins on any bakery
    """
    if role not in BAKERY_ROLES:
        raise ForbiddenError("Insufficient permissions")
    if role != SYSTEM_ADMIN and user_bakery_id != bakery_id:
        logger.warning(f"🚫 Cross-bakery access denied: user bakery {user_bakery_id} -> {bakery_id}")
        raise ForbiddenError("Access denied to this bakery")
