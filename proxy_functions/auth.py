from collections.abc import Mapping

import structlog
from structlog.contextvars import bind_contextvars

from proxy_functions.errors import AuthError, ForbiddenError
from proxy_functions.schemas.auth import UserContext
from proxy_functions.supabase_rest import IdentityVerifier, ServiceRoleClient
from proxy_functions.utils import get_bearer_token

logger = structlog.get_logger("auth")

PROJECT_MANAGER_ROLES = {"owner", "admin"}


def require_bearer_token(headers: Mapping[str, str]) -> str:
    """Pull the caller's token out of normalized headers, or fail with 401."""
    token = get_bearer_token(headers)
    if not token:
        raise AuthError("Missing authorization token")
    return token


async def authenticate(verifier: IdentityVerifier, token: str) -> UserContext:
    user = await verifier.get_user(token)
    bind_contextvars(user_id=user.id)
    return user


async def require_inviter(
    service: ServiceRoleClient, user: UserContext, project_id: str | None
) -> None:
    """
    Allow active admins everywhere and project owners/admins within their project.
    """
    profile = await service.select_single("profiles", "role, status", id=user.id)
    if profile and profile.get("role") == "admin" and profile.get("status") == "active":
        return

    if project_id:
        member = await service.select_single(
            "project_members", "role", project_id=project_id, user_id=user.id
        )
        if member and member.get("role") in PROJECT_MANAGER_ROLES:
            return

    logger.warning(
        "rbac_denied",
        action="invite_user",
        project_id=project_id,
        profile_role=(profile or {}).get("role"),
    )
    raise ForbiddenError("Not authorized to invite users")
