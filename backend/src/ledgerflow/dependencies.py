"""FastAPI dependencies shared by the categorization and reconciliation routers.

Usage:
    @router.get("/progress")
    def progress(user_id: UUID = Depends(get_current_user_id)):
        ...
"""

from typing import Optional
from uuid import UUID

import jwt
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from .auth.jwt import user_id_from_token
from .domain.ai.ports import EmbeddingProviderPort
from .infrastructure.ai import get_embedding_provider

security = HTTPBearer()


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


def get_current_user_id(
    credentials: HTTPAuthorizationCredentials = Depends(security),
) -> UUID:
    """Owning user of the request, taken from the bearer token's sub claim.

    Raises:
        HTTPException 401: If the token is expired or fails verification
    """
    try:
        return user_id_from_token(credentials.credentials)
    except jwt.ExpiredSignatureError:
        raise _unauthorized("Token has expired")
    except jwt.InvalidTokenError as e:
        raise _unauthorized(f"Invalid token: {e}")


def get_embedding_provider_dependency() -> Optional[EmbeddingProviderPort]:
    """Embedding provider for request handlers (None when embeddings are disabled)."""
    return get_embedding_provider()
