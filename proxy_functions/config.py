from dataclasses import dataclass, field

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from proxy_functions.errors import ConfigurationError


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=None, env_prefix="", case_sensitive=False, populate_by_name=True
    )

    app_name: str = "proxy-functions"
    # matches the paths the browser client already posts to
    api_prefix: str = "/.netlify/functions"
    log_level: str = "INFO"

    openai_api_key: str | None = None
    openai_api_url: str = "https://api.openai.com/v1/chat/completions"
    openai_default_model: str = "gpt-4o-mini"
    openai_timeout_seconds: float = 60.0

    stripe_secret_key: str | None = None
    stripe_api_version: str = "2024-06-20"
    stripe_price_starter_id: str | None = None
    stripe_price_team_id: str | None = None

    # the frontend build exposes the same values with a VITE_ prefix
    supabase_url: str | None = Field(
        default=None, validation_alias=AliasChoices("VITE_SUPABASE_URL", "SUPABASE_URL")
    )
    supabase_anon_key: str | None = Field(
        default=None,
        validation_alias=AliasChoices("VITE_SUPABASE_ANON_KEY", "SUPABASE_ANON_KEY"),
    )
    supabase_service_role_key: str | None = None
    supabase_timeout_seconds: float = 10.0

    default_origin: str = "http://localhost:8888"
    storage_allowed_buckets: list[str] = ["datasets", "step-images", "sops"]

    def missing_secrets(self) -> list[str]:
        names = [
            "openai_api_key",
            "stripe_secret_key",
            "supabase_url",
            "supabase_anon_key",
            "supabase_service_role_key",
        ]
        return [name for name in names if not getattr(self, name)]


settings = Settings()


def get_settings() -> Settings:
    return settings


@dataclass(frozen=True)
class OpenAIConfig:
    api_key: str
    api_url: str
    default_model: str
    timeout_seconds: float


@dataclass(frozen=True)
class SupabaseConfig:
    url: str
    anon_key: str
    service_role_key: str
    timeout_seconds: float


@dataclass(frozen=True)
class BillingConfig:
    stripe_secret_key: str
    stripe_api_version: str
    supabase: SupabaseConfig
    default_origin: str
    plan_price_ids: dict[str, str] = field(default_factory=dict)

    @property
    def allowed_price_ids(self) -> list[str]:
        return list(self.plan_price_ids.values())


def openai_config(source: Settings) -> OpenAIConfig:
    if not source.openai_api_key:
        raise ConfigurationError("Missing OPENAI_API_KEY")
    return OpenAIConfig(
        api_key=source.openai_api_key,
        api_url=source.openai_api_url,
        default_model=source.openai_default_model,
        timeout_seconds=source.openai_timeout_seconds,
    )


def _supabase_or_none(source: Settings) -> SupabaseConfig | None:
    if not (source.supabase_url and source.supabase_anon_key and source.supabase_service_role_key):
        return None
    return SupabaseConfig(
        url=source.supabase_url.rstrip("/"),
        anon_key=source.supabase_anon_key,
        service_role_key=source.supabase_service_role_key,
        timeout_seconds=source.supabase_timeout_seconds,
    )


def supabase_config(source: Settings) -> SupabaseConfig:
    config = _supabase_or_none(source)
    if config is None:
        raise ConfigurationError("Missing Supabase env vars")
    return config


def billing_config(source: Settings) -> BillingConfig:
    supabase = _supabase_or_none(source)
    if not source.stripe_secret_key or supabase is None:
        raise ConfigurationError("Missing Stripe or Supabase env vars")
    plans = {"starter": source.stripe_price_starter_id, "team": source.stripe_price_team_id}
    return BillingConfig(
        stripe_secret_key=source.stripe_secret_key,
        stripe_api_version=source.stripe_api_version,
        supabase=supabase,
        default_origin=source.default_origin,
        plan_price_ids={plan: price for plan, price in plans.items() if price},
    )
