import json
from collections.abc import Mapping
from datetime import datetime, timezone
from typing import Any
from urllib.parse import urlsplit

from proxy_functions.errors import ValidationError

_DEFAULT_PORTS = {"http": 80, "https": 443}


def utcnow() -> datetime:
    """Timezone-aware UTC now helper to avoid naive datetimes."""
    return datetime.now(timezone.utc)


def normalize_headers(headers: Mapping[str, str]) -> dict[str, str]:
    return {name.lower(): value for name, value in headers.items()}


def get_bearer_token(headers: Mapping[str, str]) -> str | None:
    """Return the token of an `Authorization: Bearer <token>` header, else None."""
    auth_header = headers.get("authorization")
    if not auth_header:
        return None
    parts = auth_header.split(" ")
    scheme = parts[0]
    token = parts[1] if len(parts) > 1 else ""
    if scheme != "Bearer" or not token:
        return None
    return token


def resolve_origin(headers: Mapping[str, str], default: str) -> str:
    """
    Best-effort `scheme://host[:port]` of the calling page.

    Origin wins over Referer. Values that do not parse as an absolute URL are
    cut down to their first three `/`-separated segments instead of failing.
    """
    raw = headers.get("origin") or headers.get("referer") or ""
    if not raw:
        return default
    try:
        parts = urlsplit(raw)
        port = parts.port
        if not parts.scheme or not parts.hostname:
            raise ValueError(raw)
    except ValueError:
        return "/".join(raw.split("/")[:3])
    scheme = parts.scheme.lower()
    host = parts.hostname
    if ":" in host:
        host = f"[{host}]"
    if port is not None and port != _DEFAULT_PORTS.get(scheme):
        return f"{scheme}://{host}:{port}"
    return f"{scheme}://{host}"


def _reject_constant(name: str) -> Any:
    raise ValueError(f"{name} is not valid JSON")


def parse_json_body(raw: bytes | str | None) -> Any:
    """Decode a request body as strict JSON; NaN and Infinity are refused."""
    if not raw:
        return {}
    try:
        return json.loads(raw, parse_constant=_reject_constant)
    except ValueError as exc:
        raise ValidationError("Invalid JSON payload") from exc


def is_number(value: Any) -> bool:
    """True for ints and floats; bools are rejected even though they subclass int."""
    return isinstance(value, (int, float)) and not isinstance(value, bool)
