# leafbot/config.py
from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import Literal


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    # Application
    app_env: Literal["dev", "staging", "prod"] = "dev"
    log_level: str = "INFO"

    # Dispatch engine
    # Max number of targets whose latest request a leaf remembers for
    # attaching original_request to asynchronous emissions (LRU eviction).
    leaf_request_cache_size: int = 1024

    # Wit.ai NLU
    wit_authorization_token: str | None = None
    wit_api_base: str = "https://api.wit.ai"
    wit_api_version: str = "20240304"
    wit_max_text_length: int = 280  # Wit rejects longer queries

    # Telegram
    telegram_bot_token: str | None = None
    telegram_bot_username: str | None = None  # Used to strip "@botname" from group commands
    telegram_webhook_secret: str | None = None  # X-Telegram-Bot-Api-Secret-Token

    # Facebook Messenger
    facebook_page_token: str | None = None
    facebook_verify_token: str | None = None  # Token for webhook verification handshake
    facebook_app_secret: str | None = None  # X-Hub-Signature-256 verification
    facebook_graph_api_version: str = "v20.0"

    # Context persistence
    # "memory" - in-process store (development, tests)
    # "postgres" - asyncpg-backed store, requires database_url
    context_store: Literal["memory", "postgres"] = "memory"
    database_url: str | None = None
    pg_pool_min: int = 1
    pg_pool_max: int = 10

    # Feature Flags
    enable_request_logging: bool = True

    @property
    def is_production(self) -> bool:
        return self.app_env == "prod"

    @property
    def telegram_enabled(self) -> bool:
        return bool(self.telegram_bot_token)

    @property
    def facebook_enabled(self) -> bool:
        return bool(self.facebook_page_token and self.facebook_verify_token)

    @property
    def wit_enabled(self) -> bool:
        return bool(self.wit_authorization_token)

    def validate_required_for_production(self) -> list[str]:
        """Validate that required settings exist for production"""
        if not self.is_production:
            return []

        missing = []

        if not (self.telegram_enabled or self.facebook_enabled):
            missing.append("telegram_bot_token or facebook_page_token+facebook_verify_token")

        if self.telegram_enabled and not self.telegram_webhook_secret:
            missing.append("telegram_webhook_secret")

        if self.context_store == "postgres" and not self.database_url:
            missing.append("database_url")

        return missing


def warn_on_risky_config(s: "Settings") -> list[str]:
    warnings: list[str] = []

    if s.context_store == "memory" and s.is_production:
        warnings.append("prod: context_store=memory (conversation context is lost on restart).")

    if not s.wit_enabled:
        warnings.append("wit_authorization_token is not set (NLU retry is disabled).")

    if s.telegram_enabled and not s.telegram_bot_username:
        warnings.append("telegram: telegram_bot_username is not set (group commands keep the @botname suffix).")

    if s.facebook_enabled and not s.facebook_app_secret:
        warnings.append("facebook: facebook_app_secret is not set (webhook signatures are not verified).")

    if s.leaf_request_cache_size < 1:
        warnings.append("leaf_request_cache_size < 1: responses will never carry original_request.")

    return warnings


def validate_or_warn(s: "Settings") -> None:
    """
    In prod: enforce required settings (hard fail).
    In non-prod: warn only.
    """
    missing = s.validate_required_for_production()

    if missing:
        raise RuntimeError(f"Missing required settings for production: {', '.join(missing)}")

    for msg in warn_on_risky_config(s):
        print(f"[WARN][config] {msg}")


settings = Settings()
validate_or_warn(settings)
