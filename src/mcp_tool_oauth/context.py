"""Module-level access to the application-wide OAuth services.

The services are a process-wide singleton shared by HTTP routes and MCP
tools, so a plain module variable is used rather than a ContextVar (which
would hide the value from request handlers running in other contexts).

Usage:
    # In server.py:
    from .context import set_services
    set_services(build_services(settings))

    # In routes or tools:
    from .context import get_services
    services = get_services()
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .services import OAuthServices

_services: "OAuthServices | None" = None


def set_services(services: "OAuthServices | None") -> None:
    """Set (or clear, with None) the OAuth services for global access."""
    global _services
    _services = services


def get_services() -> "OAuthServices":
    """Get the OAuth services.

    Raises:
        RuntimeError: If services have not been initialized
    """
    if _services is None:
        raise RuntimeError("OAuth services not initialized")
    return _services
