"""OAuth helper tools for the MCP server."""

from typing import Any

from fastmcp import FastMCP

from ..context import get_services
from ..credentials.persistence import load_credential
from ..helpers import build_login_url, get_tool
from ..logging_config import get_logger

logger = get_logger("tools.oauth")


def register_oauth_tools(mcp: FastMCP) -> None:
    """Register OAuth-related tools with the MCP server."""

    @mcp.tool()
    async def oauth_login_url(
        tenant_id: str,
        project_id: str,
        tool_id: str,
    ) -> dict[str, Any]:
        """Get the URL a user opens to authorize an MCP tool.

        Args:
            tenant_id: Tenant that owns the project
            project_id: Project the tool belongs to
            tool_id: Tool to authorize

        Returns:
            Login info including:
            - tool_id: The tool's ID
            - login_url: URL that redirects to the provider's consent page
        """
        tool = await get_tool(tenant_id, project_id, tool_id)
        base_url = get_services().settings.base_url
        return {
            "tool_id": tool.id,
            "login_url": build_login_url(base_url, tenant_id, project_id, tool_id),
        }

    @mcp.tool()
    async def oauth_credential_status(
        tenant_id: str,
        project_id: str,
        tool_id: str,
    ) -> dict[str, Any]:
        """Report whether a tool has a stored OAuth credential.

        The token itself is never returned.

        Args:
            tenant_id: Tenant that owns the project
            project_id: Project the tool belongs to
            tool_id: Tool to inspect

        Returns:
            Status including:
            - linked: Whether the tool points at a credential reference
            - credential_reference_id: The reference ID (if linked)
            - credential_store_id: Store holding the secret (if linked)
            - stored: Whether the secret is present in the store
        """
        services = get_services()
        tool = await get_tool(tenant_id, project_id, tool_id)
        if not tool.credential_reference_id:
            return {"tool_id": tool.id, "linked": False, "stored": False}

        reference = await services.credential_references.find_credential_reference(
            tool.scopes, tool.credential_reference_id
        )
        if reference is None:
            logger.warning(
                "Tool links a missing credential reference: tool_id=%s, credential_id=%s",
                tool.id,
                tool.credential_reference_id,
            )
            return {
                "tool_id": tool.id,
                "linked": True,
                "credential_reference_id": tool.credential_reference_id,
                "stored": False,
            }

        token_set = await load_credential(services.credential_stores, reference)
        return {
            "tool_id": tool.id,
            "linked": True,
            "credential_reference_id": reference.id,
            "credential_store_id": reference.credential_store_id,
            "stored": token_set is not None,
        }
