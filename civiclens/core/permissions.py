"""
Role-Based Access Control
"""
from fastapi import Depends
from typing import Any, Dict, List
from civiclens.core.auth import get_current_user
from civiclens.core.errors import AuthorizationError
from civiclens.models.issue_model import Role
import logging

logger = logging.getLogger(__name__)


def require_role(allowed_roles: List[str]):
    """
    Dependency to require specific role(s). Runs after authentication.
    """
    allowed = [getattr(role, "value", role) for role in allowed_roles]

    async def role_dependency(current_user: Dict[str, Any] = Depends(get_current_user)) -> Dict[str, Any]:
        role = current_user.get("role")
        logger.info(f"Authorize: role={role}, allowed={allowed}")

        if role not in allowed:
            logger.warning(f"Permission denied: {current_user.get('email')} (role: {role})")
            raise AuthorizationError(
                f"Unauthorized: Role '{role or 'unknown'}' does not have access."
            )

        return current_user

    return role_dependency


require_citizen = require_role([Role.CITIZEN])
require_head_authority = require_role([Role.HEAD_AUTHORITY])
