"""Application settings loaded from the environment."""

from __future__ import annotations

from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_BLOCKED_EMAIL_DOMAINS = [
    "tempmail.com",
    "10minutemail.com",
    "throwaway.email",
    "guerrillamail.com",
    "mailinator.com",
]


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    app_name: str = "resume-auth"
    app_env: str = "local"
    log_level: str = "INFO"
    cors_origins: list[str] = ["http://localhost:3000", "http://localhost:5173"]

    database_url: str = "sqlite+aiosqlite:///./resume.db"

    redis_url: str = "redis://localhost:6379/0"
    redis_socket_timeout_seconds: float = 5.0

    jwt_secret_key: str = "change-me"
    jwt_algorithm: str = "HS256"
    jwt_issuer: str = "intelli-resume"
    jwt_audience: str = "intelli-resume-users"
    access_token_expire_minutes: int = 15
    refresh_token_expire_minutes: int = 7 * 24 * 60

    session_ttl_seconds: int = 24 * 60 * 60
    max_concurrent_sessions: int = 5
    account_status_ttl_seconds: int = 30 * 24 * 60 * 60

    registration_rate_limit: int = 3
    registration_rate_window_seconds: int = 60 * 60
    blocked_email_domains: list[str] = DEFAULT_BLOCKED_EMAIL_DOMAINS

    identity_provider_url: str = "http://localhost:9999"
    identity_provider_anon_key: str = ""
    identity_provider_service_key: str | None = None
    external_call_timeout_seconds: float = 10.0

    frontend_url: str | None = None

    rate_limit_requests: int = 100
    rate_limit_window_seconds: int = 60
    rate_limit_trusted_proxies: list[str] = ["127.0.0.1/32", "::1/128"]
    rate_limit_ip_headers: list[str] = ["x-forwarded-for", "x-real-ip"]

    allow_insecure_http_cookies: bool = False


settings = Settings()
