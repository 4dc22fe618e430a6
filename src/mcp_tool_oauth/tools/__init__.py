"""MCP tools for the OAuth server."""

from .oauth import register_oauth_tools

__all__ = ["register_oauth_tools"]
