"""MCP Tool OAuth.

OAuth 2.1 + PKCE authorization-code flow that obtains and stores
credentials for third-party MCP tool servers.
"""

__version__ = "0.1.0"

__all__ = ["__version__"]
