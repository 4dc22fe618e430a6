"""Service configuration loaded from environment variables."""

from __future__ import annotations

import os

import msgspec

from .logging_config import get_logger

logger = get_logger("config")

DEFAULT_BASE_URL = "http://localhost:8000"
DEFAULT_CALLBACK_PATH = "/oauth/callback"
DEFAULT_CLIENT_ID = "mcp-client"
DEFAULT_FLOW_TTL_SECONDS = 10 * 60
DEFAULT_NANGO_SERVER_URL = "https://api.nango.dev"


class OAuthSettings(msgspec.Struct, kw_only=True, frozen=True):
    """OAuth client settings."""

    base_url: str = DEFAULT_BASE_URL
    callback_path: str = DEFAULT_CALLBACK_PATH
    # Used when dynamic registration is unavailable or fails
    default_client_id: str = DEFAULT_CLIENT_ID
    # Client metadata sent during dynamic registration
    client_name: str = "MCP Tool OAuth"
    client_uri: str = "https://modelcontextprotocol.io"
    logo_uri: str = "https://modelcontextprotocol.io/favicon.svg"
    flow_ttl_seconds: float = DEFAULT_FLOW_TTL_SECONDS
    http_timeout: float = 30.0
    environment: str = "production"
    # External secret broker (activated only when the secret key is present)
    nango_secret_key: str | None = None
    nango_server_url: str = DEFAULT_NANGO_SERVER_URL
    tools_file: str | None = None

    @property
    def redirect_uri(self) -> str:
        """Default OAuth redirect URI for this server."""
        return build_redirect_uri(self.base_url, self.callback_path)

    @property
    def is_development(self) -> bool:
        """Return True when provider error text may be shown to users."""
        return self.environment.lower() in ("development", "dev", "local")

    @property
    def broker_enabled(self) -> bool:
        """Return True if the external secret broker is configured."""
        return bool(self.nango_secret_key)


def build_redirect_uri(base_url: str, callback_path: str) -> str:
    """Join a base URL and the callback path."""
    return f"{base_url.rstrip('/')}/{callback_path.lstrip('/')}"


def get_settings() -> OAuthSettings:
    """Load OAuth settings from environment variables."""
    settings = OAuthSettings(
        base_url=os.getenv("BASE_URL", DEFAULT_BASE_URL).rstrip("/"),
        callback_path=os.getenv("OAUTH_CALLBACK_PATH", DEFAULT_CALLBACK_PATH),
        default_client_id=os.getenv("DEFAULT_OAUTH_CLIENT_ID") or DEFAULT_CLIENT_ID,
        client_name=os.getenv("OAUTH_CLIENT_NAME", "MCP Tool OAuth"),
        client_uri=os.getenv("OAUTH_CLIENT_URI", "https://modelcontextprotocol.io"),
        logo_uri=os.getenv(
            "OAUTH_CLIENT_LOGO_URI", "https://modelcontextprotocol.io/favicon.svg"
        ),
        flow_ttl_seconds=float(
            os.getenv("OAUTH_FLOW_TTL_SECONDS") or DEFAULT_FLOW_TTL_SECONDS
        ),
        http_timeout=float(os.getenv("OAUTH_HTTP_TIMEOUT") or "30"),
        environment=os.getenv("ENVIRONMENT", "production"),
        nango_secret_key=os.getenv("NANGO_SECRET_KEY") or None,
        nango_server_url=os.getenv("NANGO_SERVER_URL", DEFAULT_NANGO_SERVER_URL),
        tools_file=os.getenv("TOOLS_FILE") or None,
    )

    logger.debug(
        "Loaded settings: base_url=%s, callback_path=%s, environment=%s, broker=%s",
        settings.base_url,
        settings.callback_path,
        settings.environment,
        settings.broker_enabled,
    )
    return settings
