from fastapi import Header, Request
from typing import Optional, Dict, Any, Tuple
from supabase import AuthError
import logging
import re

from civiclens.core.database import get_supabase_service
from civiclens.core.errors import APIError, AuthenticationError
from civiclens.models.issue_model import Role

logger = logging.getLogger(__name__)

HEAD_AUTHORITY_ALIASES = {"headauthority", "authorityhead", "admin"}
_ROLE_SEPARATORS = re.compile(r"[-_ ]")


def normalize_role(role: Any) -> str:
    """
    Collapse a free-form role string into citizen or head_authority.
    Pure and total: any input, including None, yields one of the two roles.
    """
    if not isinstance(role, str) or not role:
        return Role.CITIZEN.value
    key = _ROLE_SEPARATORS.sub("", role.lower()).strip()
    if key in HEAD_AUTHORITY_ALIASES:
        return Role.HEAD_AUTHORITY.value
    return Role.CITIZEN.value


def resolve_role_and_department(
    profile: Optional[Dict[str, Any]], metadata: Optional[Dict[str, Any]]
) -> Tuple[str, Optional[str]]:
    """Profile row wins when it carries a role; otherwise fall back to auth metadata."""
    if profile and profile.get("role"):
        return normalize_role(profile.get("role")), profile.get("department")
    metadata = metadata or {}
    return normalize_role(metadata.get("role")), metadata.get("department") or None


async def get_current_user(
    request: Request, authorization: Optional[str] = Header(None)
) -> Dict[str, Any]:
    """
    Validates the Supabase access token from the Authorization header.
    Returns the merged user + profile dict with a normalized role.
    """
    logger.info(f"🔐 Auth: {request.method} {request.url.path}")

    if not authorization:
        raise AuthenticationError("No authorization header provided")

    parts = authorization.split()
    if len(parts) != 2 or parts[0].lower() != "bearer":
        raise AuthenticationError("Malformed authorization header")
    token = parts[1]

    supabase = get_supabase_service(request)

    try:
        try:
            user = await supabase.get_user(token)
        except AuthError as e:
            message = getattr(e, "message", None) or str(e)
            logger.warning(f"Token verification failed: {message}")
            raise AuthenticationError("Invalid or expired token", details=message)

        if not user:
            logger.warning("Token verification failed: no user found")
            raise AuthenticationError("Invalid or expired token", details="No user found")

        try:
            profile = await supabase.get_profile(user["id"])
        except Exception as e:
            logger.error(f"Profile fetch error for {user['id']}: {e}")
            profile = None

        metadata = user.get("user_metadata") or {}
        role, department = resolve_role_and_department(profile, metadata)

        if metadata.get("role") != role or metadata.get("department") != department:
            try:
                supabase.schedule_metadata_sync(
                    user["id"], {**metadata, "role": role, "department": department}
                )
            except Exception as e:
                logger.debug(f"Could not schedule metadata sync: {e}")

        principal = {**user, **(profile or {}), "role": role, "department": department}
        request.state.user = principal

        logger.info(f"✅ Auth success: user={user.get('email')}, role={role}, dept={department}")
        return principal

    except APIError:
        raise
    except Exception as e:
        logger.error(f"❌ Auth middleware error: {e}", exc_info=True)
        raise APIError("Authentication failed", status_code=500)
