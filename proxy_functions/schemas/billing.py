from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


class PortalRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    return_url: str | None = Field(default=None, alias="returnUrl")

    @field_validator("return_url", mode="before")
    @classmethod
    def blank_to_none(cls, value: Any) -> Any:
        return value or None


class CheckoutRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    price_id: str | None = Field(default=None, alias="priceId")
    plan: str | None = None
    success_url: str | None = Field(default=None, alias="successUrl")
    cancel_url: str | None = Field(default=None, alias="cancelUrl")

    @field_validator("price_id", "plan", "success_url", "cancel_url", mode="before")
    @classmethod
    def blank_to_none(cls, value: Any) -> Any:
        return value or None


class SessionUrl(BaseModel):
    url: str
