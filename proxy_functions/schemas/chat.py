from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationInfo, field_validator

from proxy_functions.utils import is_number


class ChatCompletionPayload(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    messages: list[Any]
    temperature: int | float = 0.2
    max_tokens: int | float = Field(default=800, alias="maxTokens")
    response_format: Any = Field(default=None, alias="responseFormat")
    model: Any = None

    @field_validator("messages")
    @classmethod
    def _require_messages(cls, value: list[Any]) -> list[Any]:
        if not value:
            raise ValueError("messages must be a non-empty array")
        return value

    @field_validator("temperature", "max_tokens", mode="before")
    @classmethod
    def _number_or_default(cls, value: Any, info: ValidationInfo) -> Any:
        # anything that is not a plain number falls back to the field default
        if is_number(value):
            return value
        return cls.model_fields[info.field_name].default

    def upstream_body(self, default_model: str) -> dict[str, Any]:
        body: dict[str, Any] = {
            "model": self.model or default_model,
            "messages": self.messages,
            "temperature": self.temperature,
            "max_tokens": self.max_tokens,
        }
        if self.response_format:
            body["response_format"] = self.response_format
        return body


class ChatCompletionResult(BaseModel):
    content: str
