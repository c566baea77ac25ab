from typing import Any

from fastapi import APIRouter, Depends, Request

from proxy_functions.billing import create_checkout_session, create_portal_session
from proxy_functions.config import (
    Settings,
    billing_config,
    get_settings,
    openai_config,
    supabase_config,
)
from proxy_functions.invitations import invite_user
from proxy_functions.openai_proxy import handle_chat_completion
from proxy_functions.schemas.billing import SessionUrl
from proxy_functions.schemas.chat import ChatCompletionResult
from proxy_functions.storage import sign_storage_url
from proxy_functions.utils import normalize_headers, parse_json_body

router = APIRouter()


@router.get("/health")
async def health() -> dict[str, str]:
    return {"status": "ok"}


@router.post("/openai", response_model=ChatCompletionResult)
async def openai_completion(
    request: Request, settings: Settings = Depends(get_settings)
) -> ChatCompletionResult:
    config = openai_config(settings)
    payload = parse_json_body(await request.body())
    return await handle_chat_completion(config, payload)


@router.post("/stripe-portal", response_model=SessionUrl)
async def stripe_portal(
    request: Request, settings: Settings = Depends(get_settings)
) -> SessionUrl:
    config = billing_config(settings)
    return await create_portal_session(
        config, normalize_headers(request.headers), await request.body()
    )


@router.post("/stripe-checkout", response_model=SessionUrl)
async def stripe_checkout(
    request: Request, settings: Settings = Depends(get_settings)
) -> SessionUrl:
    config = billing_config(settings)
    return await create_checkout_session(
        config, normalize_headers(request.headers), await request.body()
    )


@router.post("/sign-storage")
async def sign_storage(
    request: Request, settings: Settings = Depends(get_settings)
) -> dict[str, str]:
    config = supabase_config(settings)
    return await sign_storage_url(
        config,
        settings.storage_allowed_buckets,
        normalize_headers(request.headers),
        await request.body(),
    )


@router.post("/invite-user")
async def invite(
    request: Request, settings: Settings = Depends(get_settings)
) -> dict[str, Any]:
    config = supabase_config(settings)
    return await invite_user(config, normalize_headers(request.headers), await request.body())
