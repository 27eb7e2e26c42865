"""Bearer token authentication.

Tokens are issued by the external auth provider; this service only
verifies them. The ``sub`` claim is the user id that owns saved filters.
"""

from typing import Annotated, Optional

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import ExpiredSignatureError, JWTError, jwt
from pydantic import BaseModel

from arledger.core.config import settings
from arledger.core.errors import AuthenticationError, ErrorCode

# Security scheme for JWT bearer tokens
security = HTTPBearer(auto_error=False)


class UserResponse(BaseModel):
    """The authenticated caller."""
    id: str
    email: Optional[str] = None
    role: Optional[str] = None


def decode_token(token: str) -> UserResponse:
    """Verify a token and extract the caller.

    Raises:
        AuthenticationError: If the token is expired, malformed or has no subject
    """
    try:
        payload = jwt.decode(
            token,
            settings.jwt_secret,
            algorithms=[settings.jwt_algorithm],
            audience=settings.jwt_audience,
        )
    except ExpiredSignatureError:
        raise AuthenticationError(ErrorCode.AUTH_TOKEN_EXPIRED, "Token has expired")
    except JWTError as e:
        raise AuthenticationError(ErrorCode.AUTH_TOKEN_INVALID, f"Invalid token: {e}")

    user_id = payload.get("sub")
    if not user_id:
        raise AuthenticationError(ErrorCode.AUTH_TOKEN_INVALID, "Invalid token payload")

    return UserResponse(id=str(user_id), email=payload.get("email"), role=payload.get("role"))


async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> UserResponse:
    """Dependency to get the current authenticated user."""
    if credentials is None:
        raise AuthenticationError(ErrorCode.AUTH_UNAUTHORIZED, "Missing bearer token")
    return decode_token(credentials.credentials)


# Type alias for current user dependency
CurrentUser = Annotated[UserResponse, Depends(get_current_user)]
