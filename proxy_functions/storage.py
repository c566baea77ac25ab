import math
from collections.abc import Mapping, Sequence
from typing import Any

import structlog

from proxy_functions.auth import authenticate, require_bearer_token
from proxy_functions.config import SupabaseConfig
from proxy_functions.errors import ForbiddenError, ValidationError
from proxy_functions.supabase_rest import IdentityVerifier, ServiceRoleClient, SupabaseError
from proxy_functions.utils import parse_json_body

logger = structlog.get_logger("storage")

DEFAULT_EXPIRES_IN = 3600


def finite_number(value: Any) -> int | float | None:
    """Coerce numbers and numeric strings; anything else (or NaN/inf) is None."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        number = float(value)
    elif isinstance(value, str):
        try:
            number = float(value.strip() or "0")
        except ValueError:
            return None
    else:
        return None
    if not math.isfinite(number):
        return None
    return int(number) if number.is_integer() else number


def sanitize_transform(transform: Any) -> dict[str, Any] | None:
    if not transform or not isinstance(transform, dict):
        return None
    output: dict[str, Any] = {}
    for key in ("width", "height"):
        number = finite_number(transform.get(key))
        if number is not None:
            output[key] = number
    for key in ("resize", "format"):
        if transform.get(key):
            output[key] = str(transform[key])
    quality = finite_number(transform.get("quality"))
    if quality is not None:
        output["quality"] = quality
    return output or None


async def sign_storage_url(
    config: SupabaseConfig,
    allowed_buckets: Sequence[str],
    headers: Mapping[str, str],
    raw_body: bytes,
) -> dict[str, str]:
    token = require_bearer_token(headers)
    payload = parse_json_body(raw_body)
    if not isinstance(payload, dict):
        payload = {}

    bucket = str(payload.get("bucket") or "")
    path = str(payload.get("path") or "")
    if "expiresIn" in payload and payload["expiresIn"] is None:
        # explicit null is a zero expiry; only an absent or unreadable value gets the default
        expires_in: int | float = 0
    else:
        expires_in = finite_number(payload.get("expiresIn"))
        if expires_in is None:
            expires_in = DEFAULT_EXPIRES_IN
    transform = sanitize_transform(payload.get("transform"))

    if not bucket or not path:
        raise ValidationError("bucket and path are required")
    if bucket not in allowed_buckets:
        raise ForbiddenError("Bucket not allowed")

    await authenticate(IdentityVerifier(config), token)
    service = ServiceRoleClient(config)

    if transform:
        try:
            signed = await service.create_signed_url(bucket, path, expires_in, transform)
            return {"signedUrl": signed}
        except SupabaseError as exc:
            logger.info("transform_sign_failed", bucket=bucket, error=exc.message)

    try:
        signed = await service.create_signed_url(bucket, path, expires_in)
    except SupabaseError as exc:
        raise ValidationError(exc.message or "Failed to sign URL") from exc
    return {"signedUrl": signed}
