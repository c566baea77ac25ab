import json
from typing import Any

import httpx
import pydantic
import structlog
from langsmith import traceable

from proxy_functions.config import OpenAIConfig
from proxy_functions.errors import (
    UpstreamProtocolError,
    UpstreamRejectedError,
    UpstreamUnreachableError,
    ValidationError,
)
from proxy_functions.observability import record_upstream_error, track_upstream
from proxy_functions.schemas.chat import ChatCompletionPayload, ChatCompletionResult

logger = structlog.get_logger("openai_proxy")


def parse_chat_payload(payload: Any) -> ChatCompletionPayload:
    if not isinstance(payload, dict):
        raise ValidationError("messages must be a non-empty array")
    try:
        return ChatCompletionPayload.model_validate(payload)
    except pydantic.ValidationError as exc:
        raise ValidationError("messages must be a non-empty array") from exc


def _trace_inputs(inputs: dict[str, Any]) -> dict[str, Any]:
    # keep the API key out of traces
    return {"body": inputs.get("body")}


@traceable(name="openai_chat_completion", run_type="llm", process_inputs=_trace_inputs)
async def _post_completion(config: OpenAIConfig, body: dict[str, Any]) -> httpx.Response:
    headers = {
        "Authorization": f"Bearer {config.api_key}",
        "Content-Type": "application/json",
    }
    async with track_upstream("openai", "chat_completion"):
        async with httpx.AsyncClient(timeout=config.timeout_seconds) as client:
            return await client.post(config.api_url, json=body, headers=headers)


def extract_content(data: Any) -> str | None:
    """Pull `choices[0].message.content` out of a chat-completion body."""
    if not isinstance(data, dict):
        return None
    choices = data.get("choices")
    if not isinstance(choices, list) or not choices:
        return None
    choice = choices[0] if isinstance(choices[0], dict) else {}
    message = choice.get("message") or {}
    if not isinstance(message, dict):
        return None
    content = message.get("content")
    return content if isinstance(content, str) and content else None


async def forward_chat_completion(
    config: OpenAIConfig, payload: ChatCompletionPayload
) -> ChatCompletionResult:
    body = payload.upstream_body(config.default_model)
    try:
        response = await _post_completion(config, body)
    except httpx.HTTPError as exc:
        logger.warning("openai_unreachable", error_type=exc.__class__.__name__)
        raise UpstreamUnreachableError("Failed to reach OpenAI API") from exc

    upstream_text = response.text
    if not response.is_success:
        record_upstream_error("openai", "chat_completion", str(response.status_code))
        raise UpstreamRejectedError(
            response.status_code, upstream_text, "OpenAI request failed"
        )

    try:
        data = json.loads(upstream_text)
    except ValueError as exc:
        record_upstream_error("openai", "chat_completion", "invalid_json")
        raise UpstreamProtocolError("Invalid OpenAI response") from exc

    content = extract_content(data)
    if content is None:
        record_upstream_error("openai", "chat_completion", "missing_content")
        raise UpstreamProtocolError("OpenAI response missing content")

    usage = data.get("usage") if isinstance(data.get("usage"), dict) else {}
    logger.info(
        "openai_completion_succeeded",
        model=body["model"],
        prompt_tokens=usage.get("prompt_tokens"),
        completion_tokens=usage.get("completion_tokens"),
        finish_reason=data["choices"][0].get("finish_reason"),
    )
    return ChatCompletionResult(content=content)


async def handle_chat_completion(config: OpenAIConfig, raw_payload: Any) -> ChatCompletionResult:
    payload = parse_chat_payload(raw_payload)
    return await forward_chat_completion(config, payload)
