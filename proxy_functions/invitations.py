from collections.abc import Mapping
from typing import Any

import pydantic
import structlog

from proxy_functions.auth import authenticate, require_bearer_token, require_inviter
from proxy_functions.config import SupabaseConfig
from proxy_functions.errors import UpstreamProtocolError, ValidationError
from proxy_functions.schemas.auth import InviteRequest
from proxy_functions.supabase_rest import IdentityVerifier, ServiceRoleClient, SupabaseError
from proxy_functions.utils import parse_json_body, utcnow

logger = structlog.get_logger("invitations")


def parse_invite(payload: Any) -> InviteRequest:
    if not isinstance(payload, dict):
        payload = {}
    try:
        request = InviteRequest.model_validate(payload)
    except pydantic.ValidationError as exc:
        raise ValidationError("Invalid JSON payload") from exc
    if not request.email:
        raise ValidationError("email is required")
    return request


async def _record_invite(
    service: ServiceRoleClient, request: InviteRequest, invited_user_id: str, inviter_id: str
) -> None:
    """Best effort: the invite has already been sent, so bookkeeping failures are only logged."""
    email = request.email or ""
    try:
        await service.upsert(
            "profiles",
            {
                "id": invited_user_id,
                "email": email,
                "full_name": request.full_name or email,
                "role": request.role,
                "status": "invited",
            },
            on_conflict="id",
        )
        if request.project_id:
            await service.upsert(
                "project_members",
                {
                    "project_id": request.project_id,
                    "user_id": invited_user_id,
                    "user_email": email,
                    "user_name": request.full_name or email.split("@")[0],
                    "role": request.project_role,
                    "permissions": request.permissions,
                    "status": "pending",
                    "invited_by": inviter_id,
                    "invited_date": utcnow().isoformat(),
                },
                on_conflict="project_id,user_email",
            )
    except SupabaseError as exc:
        logger.warning(
            "invite_bookkeeping_failed",
            invited_user_id=invited_user_id,
            status_code=exc.status_code,
            error=exc.message,
        )


async def invite_user(
    config: SupabaseConfig, headers: Mapping[str, str], raw_body: bytes
) -> dict[str, Any]:
    token = require_bearer_token(headers)
    request = parse_invite(parse_json_body(raw_body))

    requester = await authenticate(IdentityVerifier(config), token)
    service = ServiceRoleClient(config)
    await require_inviter(service, requester, request.project_id)

    try:
        invited = await service.invite_user_by_email(request.email or "", {"role": request.role})
    except SupabaseError as exc:
        raise UpstreamProtocolError(exc.message or "Invite failed") from exc

    invited_user_id = str(invited["id"])
    await _record_invite(service, request, invited_user_id, requester.id)
    logger.info("user_invited", invited_user_id=invited_user_id, project_id=request.project_id)
    return {"invited": True, "userId": invited_user_id, "projectId": request.project_id}
