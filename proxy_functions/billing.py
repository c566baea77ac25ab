from collections.abc import AsyncIterator, Awaitable, Callable, Mapping
from contextlib import asynccontextmanager
from typing import Any

import pydantic
import stripe
import structlog

from proxy_functions.auth import authenticate, require_bearer_token
from proxy_functions.config import BillingConfig
from proxy_functions.errors import (
    AuthorizationGapError,
    UpstreamProtocolError,
    UpstreamUnreachableError,
    ValidationError,
)
from proxy_functions.observability import track_upstream
from proxy_functions.schemas.auth import UserContext
from proxy_functions.schemas.billing import CheckoutRequest, PortalRequest, SessionUrl
from proxy_functions.supabase_rest import IdentityVerifier, ServiceRoleClient
from proxy_functions.utils import parse_json_body, resolve_origin

logger = structlog.get_logger("billing")


@asynccontextmanager
async def stripe_client(config: BillingConfig) -> AsyncIterator[stripe.StripeClient]:
    """One Stripe client per invocation; its connection pools are closed on exit."""
    http_client = stripe.HTTPXClient()
    try:
        # no silent retries on top of the single attempt
        yield stripe.StripeClient(
            config.stripe_secret_key,
            stripe_version=config.stripe_api_version,
            max_network_retries=0,
            http_client=http_client,
        )
    finally:
        await http_client.close_async()


async def _call_stripe(
    operation: str, create: Callable[..., Awaitable[Any]], params: dict[str, Any]
) -> Any:
    try:
        async with track_upstream("stripe", operation):
            session = await create(params=params)
    except stripe.APIConnectionError as exc:
        logger.warning("stripe_unreachable", operation=operation, error=str(exc))
        raise UpstreamUnreachableError("Failed to reach Stripe API") from exc
    except stripe.StripeError as exc:
        logger.warning(
            "stripe_request_failed",
            operation=operation,
            http_status=exc.http_status,
            code=exc.code,
        )
        raise UpstreamProtocolError(exc.user_message or "Stripe request failed") from exc
    if not getattr(session, "url", None):
        raise UpstreamProtocolError("Stripe session missing url")
    return session


def _parse_model(model: type[pydantic.BaseModel], payload: Any) -> Any:
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")
    try:
        return model.model_validate(payload)
    except pydantic.ValidationError as exc:
        raise ValidationError("Invalid JSON payload") from exc


def _optional_portal_request(raw_body: bytes) -> PortalRequest:
    # the portal body is optional; anything unreadable counts as empty
    try:
        return _parse_model(PortalRequest, parse_json_body(raw_body))
    except ValidationError:
        return PortalRequest()


async def _stripe_customer_id(service: ServiceRoleClient, user: UserContext) -> str | None:
    profile = await service.select_single("profiles", "stripe_customer_id", id=user.id)
    return (profile or {}).get("stripe_customer_id") or None


async def create_portal_session(
    config: BillingConfig, headers: Mapping[str, str], raw_body: bytes
) -> SessionUrl:
    token = require_bearer_token(headers)
    user = await authenticate(IdentityVerifier(config.supabase), token)

    service = ServiceRoleClient(config.supabase)
    customer_id = await _stripe_customer_id(service, user)
    if not customer_id:
        raise AuthorizationGapError("No Stripe customer on file")

    request = _optional_portal_request(raw_body)
    return_url = request.return_url or f"{resolve_origin(headers, config.default_origin)}/billing"

    async with stripe_client(config) as client:
        session = await _call_stripe(
            "billing_portal_session",
            client.billing_portal.sessions.create_async,
            {"customer": customer_id, "return_url": return_url},
        )
    logger.info("billing_portal_session_created", customer_id=customer_id)
    return SessionUrl(url=session.url)


def resolve_price_id(config: BillingConfig, request: CheckoutRequest) -> str:
    resolved = request.price_id or config.plan_price_ids.get(request.plan or "")
    if not resolved:
        raise ValidationError("priceId or plan is required")
    if request.price_id and request.price_id not in config.allowed_price_ids:
        raise ValidationError("priceId not allowed")
    return resolved


async def create_checkout_session(
    config: BillingConfig, headers: Mapping[str, str], raw_body: bytes
) -> SessionUrl:
    token = require_bearer_token(headers)
    request = _parse_model(CheckoutRequest, parse_json_body(raw_body))
    price_id = resolve_price_id(config, request)

    user = await authenticate(IdentityVerifier(config.supabase), token)
    service = ServiceRoleClient(config.supabase)
    profile = await service.select_single("profiles", "id, email, stripe_customer_id", id=user.id) or {}

    origin = resolve_origin(headers, config.default_origin)
    params: dict[str, Any] = {
        "mode": "subscription",
        "allow_promotion_codes": True,
        "line_items": [{"price": price_id, "quantity": 1}],
        "success_url": request.success_url or f"{origin}/billing?checkout=success",
        "cancel_url": request.cancel_url or f"{origin}/pricing",
        "client_reference_id": user.id,
        "metadata": {"supabase_user_id": user.id},
    }
    customer_id = profile.get("stripe_customer_id")
    if customer_id:
        params["customer"] = customer_id
    else:
        # Stripe creates the customer during checkout; linking it happens outside this service
        email = profile.get("email") or user.email
        if email:
            params["customer_email"] = email

    async with stripe_client(config) as client:
        session = await _call_stripe(
            "checkout_session", client.checkout.sessions.create_async, params
        )
    logger.info(
        "checkout_session_created",
        price_id=price_id,
        existing_customer=bool(customer_id),
    )
    return SessionUrl(url=session.url)
