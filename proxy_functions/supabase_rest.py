"""
Thin Supabase REST clients.

Two deliberately separate capabilities:

* ``IdentityVerifier`` holds the public anon key and can only resolve a
  caller's bearer token into a user.
* ``ServiceRoleClient`` holds the service-role key and performs privileged
  reads and writes (PostgREST, storage signing, admin invites). It never
  verifies caller tokens.

Both open a fresh ``httpx.AsyncClient`` per call; nothing is shared between
invocations.
"""
from typing import Any
from urllib.parse import quote

import httpx
import structlog

from proxy_functions.config import SupabaseConfig
from proxy_functions.errors import AuthError, UpstreamUnreachableError
from proxy_functions.observability import record_upstream_error, track_upstream
from proxy_functions.schemas.auth import UserContext

logger = structlog.get_logger("supabase")

_SINGLE_OBJECT = "application/vnd.pgrst.object+json"


class SupabaseError(Exception):
    """A Supabase endpoint answered with a non-success status."""

    def __init__(self, message: str, status_code: int) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code


def _error_message(response: httpx.Response, fallback: str) -> str:
    try:
        body = response.json()
    except ValueError:
        return fallback
    if not isinstance(body, dict):
        return fallback
    for key in ("msg", "message", "error_description", "error"):
        value = body.get(key)
        if isinstance(value, str) and value:
            return value
    return fallback


async def _send(
    timeout: float,
    operation: str,
    method: str,
    url: str,
    headers: dict[str, str],
    params: dict[str, str] | None = None,
    json: Any = None,
) -> httpx.Response:
    async with track_upstream("supabase", operation):
        async with httpx.AsyncClient(timeout=timeout) as client:
            return await client.request(method, url, params=params, json=json, headers=headers)


class IdentityVerifier:
    def __init__(self, config: SupabaseConfig) -> None:
        self._url = config.url
        self._anon_key = config.anon_key
        self._timeout = config.timeout_seconds

    async def get_user(self, token: str) -> UserContext:
        try:
            response = await _send(
                self._timeout,
                "get_user",
                "GET",
                f"{self._url}/auth/v1/user",
                headers={"apikey": self._anon_key, "Authorization": f"Bearer {token}"},
            )
        except httpx.HTTPError as exc:
            logger.warning("token_verification_unreachable", error=str(exc))
            raise AuthError("Invalid auth token") from exc

        if response.status_code != 200:
            logger.info("token_rejected", status_code=response.status_code)
            raise AuthError("Invalid auth token")
        try:
            payload = response.json()
        except ValueError as exc:
            raise AuthError("Invalid auth token") from exc
        if not isinstance(payload, dict) or not payload.get("id"):
            raise AuthError("Invalid auth token")
        return UserContext(id=str(payload["id"]), email=payload.get("email"))


class ServiceRoleClient:
    def __init__(self, config: SupabaseConfig) -> None:
        self._url = config.url
        self._service_key = config.service_role_key
        self._timeout = config.timeout_seconds

    def _headers(self, **extra: str) -> dict[str, str]:
        headers = {
            "apikey": self._service_key,
            "Authorization": f"Bearer {self._service_key}",
        }
        headers.update(extra)
        return headers

    async def _call(self, operation: str, method: str, path: str, **kwargs: Any) -> httpx.Response:
        try:
            return await _send(self._timeout, operation, method, f"{self._url}{path}", **kwargs)
        except httpx.HTTPError as exc:
            raise UpstreamUnreachableError("Failed to reach Supabase") from exc

    async def select_single(self, table: str, columns: str, **filters: str) -> dict[str, Any] | None:
        """Fetch exactly one row matching every `column=value` filter, or None."""
        params = {"select": columns}
        params.update({column: f"eq.{value}" for column, value in filters.items()})
        response = await self._call(
            "select",
            "GET",
            f"/rest/v1/{table}",
            params=params,
            headers=self._headers(Accept=_SINGLE_OBJECT),
        )
        if response.status_code != 200:
            # 406 is PostgREST's answer to "zero or many rows" for a single-object request
            logger.info("select_single_empty", table=table, status_code=response.status_code)
            return None
        try:
            row = response.json()
        except ValueError:
            return None
        return row if isinstance(row, dict) else None

    async def upsert(self, table: str, row: dict[str, Any], on_conflict: str) -> None:
        response = await self._call(
            "upsert",
            "POST",
            f"/rest/v1/{table}",
            params={"on_conflict": on_conflict},
            json=row,
            headers=self._headers(Prefer="resolution=merge-duplicates,return=minimal"),
        )
        if response.status_code >= 400:
            record_upstream_error("supabase", "upsert", str(response.status_code))
            raise SupabaseError(_error_message(response, "Upsert failed"), response.status_code)

    async def invite_user_by_email(self, email: str, data: dict[str, Any]) -> dict[str, Any]:
        response = await self._call(
            "invite",
            "POST",
            "/auth/v1/invite",
            json={"email": email, "data": data},
            headers=self._headers(),
        )
        if response.status_code >= 400:
            record_upstream_error("supabase", "invite", str(response.status_code))
            raise SupabaseError(_error_message(response, "Invite failed"), response.status_code)
        try:
            user = response.json()
        except ValueError as exc:
            raise SupabaseError("Invite failed", response.status_code) from exc
        if not isinstance(user, dict) or not user.get("id"):
            raise SupabaseError("Invite failed", response.status_code)
        return user

    async def create_signed_url(
        self,
        bucket: str,
        path: str,
        expires_in: int,
        transform: dict[str, Any] | None = None,
    ) -> str:
        body: dict[str, Any] = {"expiresIn": expires_in}
        if transform:
            body["transform"] = transform
        response = await self._call(
            "sign_url",
            "POST",
            f"/storage/v1/object/sign/{bucket}/{quote(path)}",
            json=body,
            headers=self._headers(),
        )
        if response.status_code >= 400:
            raise SupabaseError(_error_message(response, "Failed to sign URL"), response.status_code)
        try:
            signed = response.json().get("signedURL")
        except (ValueError, AttributeError) as exc:
            raise SupabaseError("Failed to sign URL", response.status_code) from exc
        if not signed:
            raise SupabaseError("Failed to sign URL", response.status_code)
        return f"{self._url}/storage/v1{signed}"
