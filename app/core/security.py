"""
Security utilities for authentication and authorization
Decodes bearer tokens issued by the auth service and checks roles
"""

from datetime import datetime, timedelta, timezone
from typing import Dict, Any
from jose import JWTError, jwt
from fastapi import Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from .config import settings
from .exceptions import UnauthorizedException, ForbiddenException

# Security scheme
security = HTTPBearer()

class SecurityUtils:
    """Security utility functions"""

    @staticmethod
    def create_access_token(data: Dict[str, Any], expires_minutes: int = 30) -> str:
        """Create JWT access token (used by tooling and tests)"""
        to_encode = data.copy()
        expire = datetime.now(timezone.utc) + timedelta(minutes=expires_minutes)
        to_encode.update({"exp": expire, "type": "access"})
        return jwt.encode(to_encode, settings.SECRET_KEY, algorithm=settings.ALGORITHM)

    @staticmethod
    def decode_token(token: str) -> Dict[str, Any]:
        """Decode and validate JWT token"""
        try:
            return jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
        except JWTError:
            raise UnauthorizedException("Invalid authentication credentials")

# Dependency to get current user from token
async def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security)
) -> Dict[str, Any]:
    """Extract and validate user from JWT token"""
    payload = SecurityUtils.decode_token(credentials.credentials)

    if payload.get("type") != "access":
        raise UnauthorizedException("Invalid token type")

    if not payload.get("sub"):
        raise UnauthorizedException("Token has no subject")

    return {
        "id": payload.get("sub"),
        "role": payload.get("role"),
        "email": payload.get("email"),
    }

# Role-based access control
def require_role(allowed_roles: list[str]):
    """Dependency factory that checks the caller's role"""
    async def role_checker(current_user: dict = Depends(get_current_user)):
        if current_user.get("role") not in allowed_roles:
            raise ForbiddenException(f"{' or '.join(allowed_roles)} only")
        return current_user
    return role_checker

# Specific role dependencies
require_admin = require_role(["admin"])
require_client = require_role(["client"])
require_companion = require_role(["companion"])
