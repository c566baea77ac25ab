"""
Caller-side wrapper for the proxy functions.

Mirrors what the web app does before every call: resolve the current session
token, post JSON with it as a bearer token, and surface the server's
``error`` message when the call fails.
"""
import json
from collections.abc import Awaitable, Callable
from typing import Any

import httpx
import structlog

logger = structlog.get_logger("functions_client")

TokenProvider = Callable[[], Awaitable[str | None]]

DEFAULT_SYSTEM_PROMPT = "You are a helpful assistant."

SOP_SYSTEM_PROMPT = (
    "You are an expert in computer vision and object detection annotation. "
    "Return ONLY valid JSON: an array of step objects with fields "
    "title, description, product, condition, classes (array of strings), status, "
    "clarity_score, business_logic. "
    "Do not include any prose outside the JSON."
)


class FunctionsClientError(Exception):
    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class FunctionsClient:
    def __init__(
        self,
        base_url: str,
        token_provider: TokenProvider,
        timeout: float = 60.0,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._token_provider = token_provider
        self._timeout = timeout

    async def _access_token(self) -> str:
        token = await self._token_provider()
        if not token:
            raise FunctionsClientError("Sign in required")
        return token

    async def post_json(self, path: str, body: dict[str, Any] | None = None) -> dict[str, Any]:
        token = await self._access_token()
        url = f"{self._base_url}/{path.lstrip('/')}"
        async with httpx.AsyncClient(timeout=self._timeout) as client:
            response = await client.post(
                url,
                json=body or {},
                headers={"Authorization": f"Bearer {token}"},
            )
        try:
            payload = response.json()
        except ValueError:
            payload = {}
        if not response.is_success:
            message = payload.get("error") if isinstance(payload, dict) else None
            logger.info("function_call_failed", path=path, status_code=response.status_code)
            raise FunctionsClientError(message or "Request failed", response.status_code)
        return payload

    async def chat(
        self,
        messages: list[dict[str, Any]],
        temperature: float | None = None,
        max_tokens: int | None = None,
        response_format: dict[str, Any] | None = None,
        model: str | None = None,
    ) -> str:
        body: dict[str, Any] = {"messages": messages}
        if temperature is not None:
            body["temperature"] = temperature
        if max_tokens is not None:
            body["maxTokens"] = max_tokens
        if response_format:
            body["responseFormat"] = response_format
        if model:
            body["model"] = model
        payload = await self.post_json("openai", body)
        return payload.get("content", "")

    async def create_portal_session(self, return_url: str | None = None) -> dict[str, Any]:
        return await self.post_json("stripe-portal", {"returnUrl": return_url})

    async def start_checkout(
        self,
        plan: str | None = None,
        price_id: str | None = None,
        success_url: str | None = None,
        cancel_url: str | None = None,
    ) -> dict[str, Any]:
        return await self.post_json(
            "stripe-checkout",
            {"plan": plan, "priceId": price_id, "successUrl": success_url, "cancelUrl": cancel_url},
        )

    async def sign_storage_url(
        self,
        bucket: str,
        path: str,
        expires_in: int = 3600,
        transform: dict[str, Any] | None = None,
    ) -> str:
        body: dict[str, Any] = {"bucket": bucket, "path": path, "expiresIn": expires_in}
        if transform:
            body["transform"] = transform
        payload = await self.post_json("sign-storage", body)
        return payload["signedUrl"]

    async def invite_user(self, **payload: Any) -> dict[str, Any]:
        return await self.post_json("invite-user", payload)

    async def invoke_llm(
        self,
        prompt: str,
        response_json_schema: dict[str, Any] | None = None,
        temperature: float = 0.2,
        max_tokens: int = 600,
        model: str | None = None,
    ) -> Any:
        system_lines = [DEFAULT_SYSTEM_PROMPT]
        if response_json_schema:
            system_lines.extend(
                [
                    "Return only valid JSON that matches this schema:",
                    json.dumps(response_json_schema),
                ]
            )
        content = await self.chat(
            [
                {"role": "system", "content": "\n".join(system_lines)},
                {"role": "user", "content": prompt},
            ],
            temperature=temperature,
            max_tokens=max_tokens,
            response_format={"type": "json_object"} if response_json_schema else None,
            model=model,
        )
        if not response_json_schema:
            return content.strip()
        try:
            return json.loads(content)
        except json.JSONDecodeError as exc:
            raise FunctionsClientError("Failed to parse OpenAI JSON response") from exc

    async def generate_steps_from_sop(
        self, sop_url: str, prompt: str, temperature: float = 0.2
    ) -> list[dict[str, Any]]:
        content = await self.chat(
            [
                {"role": "system", "content": SOP_SYSTEM_PROMPT},
                {
                    "role": "user",
                    "content": (
                        f"{prompt}\n\n"
                        f"SOP file URL: {sop_url}\n"
                        "Output strictly JSON with no markdown, no code fences."
                    ),
                },
            ],
            temperature=temperature,
            max_tokens=800,
            response_format={"type": "json_object"},
        )
        try:
            parsed = json.loads(content)
        except json.JSONDecodeError as exc:
            raise FunctionsClientError("Failed to parse OpenAI JSON response") from exc

        # the model answers either {"steps": [...]} or a bare array
        if isinstance(parsed, list):
            return parsed
        if isinstance(parsed, dict) and isinstance(parsed.get("steps"), list):
            return parsed["steps"]
        raise FunctionsClientError("OpenAI response did not contain steps array")
