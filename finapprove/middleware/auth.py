from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from jose import JWTError
import structlog

from finapprove.services.auth_service import Actor, verify_access_token

logger = structlog.get_logger()

security = HTTPBearer()


async def get_current_actor(
    credentials: HTTPAuthorizationCredentials = Depends(security),
) -> Actor:
    """FastAPI dependency: verify the bearer JWT and return the acting user."""
    try:
        payload = verify_access_token(credentials.credentials)
        actor = Actor.from_claims(payload)
    except (JWTError, KeyError, ValueError) as e:
        logger.warning("auth_token_invalid", error=str(e))
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={
                "error": {
                    "code": "AUTH_TOKEN_INVALID",
                    "message": "Invalid or expired token",
                }
            },
            headers={"WWW-Authenticate": "Bearer"},
        )
    structlog.contextvars.bind_contextvars(actor_id=str(actor.id), role=actor.role)
    return actor
