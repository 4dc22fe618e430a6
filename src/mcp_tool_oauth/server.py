"""FastMCP server setup and lifecycle management for MCP tool OAuth."""

from __future__ import annotations

import asyncio
import os
import signal
from contextlib import asynccontextmanager
from typing import Annotated, AsyncIterator

import msgspec
import typer
from dotenv import load_dotenv
from fastmcp import FastMCP

from .config import OAuthSettings, get_settings
from .context import get_services, set_services
from .helpers import LOGIN_PATH
from .logging_config import get_logger, setup_logging
from .oauth.storage import get_storage_type
from .routes import callback_route, login_route
from .services import OAuthServices, build_services
from .tools import register_oauth_tools

load_dotenv()
setup_logging()

logger = get_logger("server")


class ServerConfig(msgspec.Struct, kw_only=True):
    """Server configuration."""

    # HTTP server settings
    port: int = 8000


class AppContext(msgspec.Struct, kw_only=True):
    """Application context shared across requests."""

    services: OAuthServices
    config: ServerConfig


def get_config() -> ServerConfig:
    """Load configuration from environment variables."""
    # Cloud platform standard: PORT first, then FASTMCP_PORT, then default
    port = int(os.getenv("PORT") or os.getenv("FASTMCP_PORT") or "8000")
    logger.debug("Loaded config: port=%d", port)
    return ServerConfig(port=port)


@asynccontextmanager
async def app_lifespan(mcp: FastMCP) -> AsyncIterator[AppContext]:
    """Expose the shared services to MCP request handlers.

    Services are owned by run_server_async(), not by this context, because
    the HTTP routes use them outside of any MCP session.
    """
    logger.info("Starting MCP Tool OAuth Server")
    yield AppContext(services=get_services(), config=get_config())


def _mask_secret(value: str | None) -> str:
    """Mask sensitive values for display."""
    if not value:
        return "(not set)"
    if len(value) <= 8:
        return "****"
    return value[:4] + "****" + value[-4:]


def _print_config(transport: str, port: int, settings: OAuthSettings) -> None:
    """Print server configuration at startup."""
    storage_type = get_storage_type()
    redis_url = os.getenv("REDIS_URL")

    sections: list[tuple[str, list[tuple[str, str]]]] = [
        (
            "Server",
            [
                ("Transport", transport),
                ("Port", str(port)),
                ("Log Level", os.getenv("LOG_LEVEL", "INFO")),
                ("Environment", settings.environment),
            ],
        ),
        (
            "OAuth",
            [
                ("Base URL", settings.base_url),
                ("Redirect URI", settings.redirect_uri),
                ("Default Client ID", settings.default_client_id),
                ("Flow TTL", f"{settings.flow_ttl_seconds:g}s"),
            ],
        ),
    ]

    storage_items: list[tuple[str, str]] = [("Type", storage_type)]
    if storage_type == "redis":
        storage_items.append(("Redis URL", redis_url or "(not set)"))
    storage_items.append(
        (
            "Encryption",
            "enabled" if os.getenv("STORAGE_ENCRYPTION_KEY") else "disabled",
        )
    )
    storage_items.append(("Nango Secret", _mask_secret(settings.nango_secret_key)))
    sections.append(("Credential Storage", storage_items))

    logger.info("")
    logger.info("=" * 55)
    logger.info("  MCP Tool OAuth Server Configuration")
    logger.info("=" * 55)

    for section_name, items in sections:
        logger.info("")
        logger.info("  [%s]", section_name)
        for key, value in items:
            logger.info("    %-20s %s", key, value)

    logger.info("")
    logger.info("=" * 55)

    warnings: list[str] = []

    if transport == "http" and not os.getenv("BASE_URL"):
        warnings.append("BASE_URL should be set for OAuth callbacks")
    if storage_type == "redis" and not redis_url:
        warnings.append("REDIS_URL is required when OAUTH_STORAGE_TYPE=redis")
    if transport == "stdio":
        warnings.append("OAuth login/callback routes are only served with --transport http")

    for warning in warnings:
        logger.warning("  ! %s", warning)

    if warnings:
        logger.info("")


def create_server(services: OAuthServices | None = None) -> FastMCP:
    """Create and configure the FastMCP server.

    Args:
        services: OAuth services (built from the environment when omitted)

    Returns:
        Configured FastMCP server instance
    """
    settings = services.settings if services else get_settings()
    set_services(services or build_services(settings))

    mcp = FastMCP("MCP Tool OAuth Server", lifespan=app_lifespan)

    logger.debug("Registering OAuth routes: login=%s, callback=%s", LOGIN_PATH, settings.callback_path)
    mcp.custom_route(LOGIN_PATH, methods=["GET"])(login_route)
    mcp.custom_route(settings.callback_path, methods=["GET"])(callback_route)

    logger.debug("Registering OAuth tools")
    register_oauth_tools(mcp)

    logger.debug("Server creation complete")
    return mcp


async def run_server_async(transport: str, port: int) -> None:
    """Run the server with graceful shutdown support.

    Args:
        transport: Transport mode ('stdio' or 'http')
        port: Port number for HTTP transport
    """
    settings = get_settings()
    _print_config(transport, port, settings)
    services = build_services(settings)
    server = create_server(services)

    def handle_shutdown(sig: signal.Signals) -> None:
        logger.info("Received signal %s, initiating shutdown...", sig.name)

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, handle_shutdown, sig)
        except NotImplementedError:
            # Windows doesn't support add_signal_handler for SIGTERM
            pass

    logger.info("Starting server with transport: %s", transport)

    try:
        if transport == "http":
            await server.run_async(transport="http", port=port)
        else:
            await server.run_async(transport="stdio")
    except asyncio.CancelledError:
        logger.info("Server task cancelled")
    finally:
        await services.aclose()
        set_services(None)
        logger.info("Server shutdown complete")


app = typer.Typer(
    name="mcp-tool-oauth",
    help="MCP Tool OAuth Server - OAuth 2.1 + PKCE authorization for MCP tool servers.",
    add_completion=False,
)


@app.command()
def main(
    transport: Annotated[
        str,
        typer.Option(
            "--transport",
            "-t",
            help="Transport mode: stdio, http",
        ),
    ] = "http",
    port: Annotated[
        int | None,
        typer.Option(
            "--port",
            "-p",
            help="Port for HTTP transport (default: from PORT env or 8000)",
        ),
    ] = None,
) -> None:
    """Run the MCP Tool OAuth Server."""
    actual_port = port or get_config().port

    try:
        asyncio.run(run_server_async(transport, actual_port))
    except KeyboardInterrupt:
        # Fallback for platforms where signal handlers don't work
        logger.info("Server stopped by user")


if __name__ == "__main__":
    app()
