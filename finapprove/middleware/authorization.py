from fastapi import Depends
import structlog

from finapprove.exceptions import AuthorizationError
from finapprove.middleware.auth import get_current_actor
from finapprove.services.auth_service import Actor
from finapprove.services.permission_service import has_permission

logger = structlog.get_logger()


def require_roles(*allowed_roles: str):
    """
    FastAPI dependency factory for role-based access control.

    Usage:
        @router.post("/{request_id}/admin-review")
        async def admin_review(
            actor: Actor = Depends(get_current_actor),
            _auth: None = Depends(require_roles("ADMIN")),
        ):
    """
    async def check_role(actor: Actor = Depends(get_current_actor)):
        if actor.role not in allowed_roles:
            logger.warning("role_check_denied", role=actor.role, required=list(allowed_roles))
            raise AuthorizationError(
                f"Role '{actor.role}' cannot perform this action. Required: {list(allowed_roles)}"
            )
        return None

    return check_role


def require_permission(permission: str):
    """Dependency factory backed by the role permission table."""
    async def check_permission(actor: Actor = Depends(get_current_actor)):
        if not has_permission(actor.role, permission):
            logger.warning("permission_check_denied", role=actor.role, permission=permission)
            raise AuthorizationError(f"Missing permission '{permission}'")
        return None

    return check_permission
