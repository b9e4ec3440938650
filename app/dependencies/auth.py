"""
Authentication dependencies for FastAPI.

The notes API is an operator surface protected by a single static bearer token.
"""
import hmac

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from app.config import settings


# Security scheme
security = HTTPBearer(auto_error=False)


async def require_admin_token(
    credentials: HTTPAuthorizationCredentials | None = Depends(security)
) -> str:
    """
    Dependency that requires `Authorization: Bearer <ADMIN_TOKEN>`.
    
    Returns the token if valid, raises 401 otherwise.
    
    Usage:
        @router.post("/api/notes")
        async def create(token: str = Depends(require_admin_token)):
            ...
    """
    if credentials is None or credentials.scheme.lower() != "bearer":
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={"error": "Unauthorized", "details": ["Missing or invalid Authorization header"]},
            headers={"WWW-Authenticate": "Bearer"},
        )
    
    if not hmac.compare_digest(credentials.credentials, settings.ADMIN_TOKEN):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={"error": "Unauthorized", "details": ["Invalid authentication token"]},
            headers={"WWW-Authenticate": "Bearer"},
        )
    
    return credentials.credentials
