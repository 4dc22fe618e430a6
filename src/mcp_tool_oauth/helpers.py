"""Shared helpers for HTTP routes and MCP tools.

Usage:
    from .helpers import get_tool

    tool = await get_tool(tenant_id, project_id, tool_id)
"""

from __future__ import annotations

from urllib.parse import urlencode

from .context import get_services
from .errors import NotFoundError
from .logging_config import get_logger
from .models import ProjectScopes, Tool

logger = get_logger("helpers")

LOGIN_PATH = "/oauth/login"


async def get_tool(tenant_id: str, project_id: str, tool_id: str) -> Tool:
    """Look up a tool in the registry.

    Raises:
        NotFoundError: If the tool does not exist in the given scope
        RuntimeError: If services are not initialized
    """
    scopes = ProjectScopes(tenant_id=tenant_id, project_id=project_id)
    tool = await get_services().tools.get_tool_by_id(scopes, tool_id)
    if tool is None:
        logger.error(
            "Tool not found: tool_id=%s, tenant_id=%s, project_id=%s",
            tool_id,
            tenant_id,
            project_id,
        )
        raise NotFoundError(f"Tool {tool_id} not found")
    return tool


def build_login_url(base_url: str, tenant_id: str, project_id: str, tool_id: str) -> str:
    """URL of the login route that starts OAuth for a tool."""
    query = urlencode({"tenantId": tenant_id, "projectId": project_id, "toolId": tool_id})
    return f"{base_url.rstrip('/')}{LOGIN_PATH}?{query}"
