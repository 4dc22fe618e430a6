"""HTTP routes for the tool OAuth flow.

- GET /oauth/login?tenantId&projectId&toolId: redirect to the consent page
- GET /oauth/callback?code&state&error&error_description: finish the flow

Both are mounted as FastMCP custom routes by server.create_server().
"""

from __future__ import annotations

from starlette.requests import Request
from starlette.responses import HTMLResponse, RedirectResponse, Response

from .context import get_services
from .errors import ToolOAuthError
from .helpers import get_tool
from .logging_config import get_logger
from .pages import render_error_page, render_success_page

logger = get_logger("routes")

GENERIC_LOGIN_ERROR = "Failed to initiate OAuth login."
GENERIC_CALLBACK_ERROR = "OAuth Processing Failed. Please try again."


def _error_response(error: ToolOAuthError) -> HTMLResponse:
    detail = None
    message = error.public_message
    if get_services().settings.is_development:
        message = error.message
        detail = error.detail
    return HTMLResponse(
        render_error_page("OAuth Error", message, detail),
        status_code=error.status_code,
    )


async def login_route(request: Request) -> Response:
    """Start OAuth for a tool and redirect to its authorization server."""
    params = request.query_params
    tenant_id = params.get("tenantId")
    project_id = params.get("projectId")
    tool_id = params.get("toolId")

    if not (tenant_id and project_id and tool_id):
        return HTMLResponse(
            render_error_page(
                "OAuth Error", "tenantId, projectId and toolId are required."
            ),
            status_code=400,
        )

    services = get_services()
    try:
        tool = await get_tool(tenant_id, project_id, tool_id)
        initiation = await services.initiator.initiate(
            tool_server_url=tool.server_url,
            tool_id=tool_id,
            tenant_id=tenant_id,
            project_id=project_id,
        )
    except ToolOAuthError as e:
        logger.error(
            "OAuth login failed: tool_id=%s, tenant_id=%s, project_id=%s, error=%s",
            tool_id,
            tenant_id,
            project_id,
            e.message,
        )
        return _error_response(e)
    except Exception:
        logger.exception("Unexpected error during OAuth login: tool_id=%s", tool_id)
        return HTMLResponse(
            render_error_page("OAuth Error", GENERIC_LOGIN_ERROR), status_code=500
        )

    return RedirectResponse(initiation.redirect_url, status_code=302)


async def callback_route(request: Request) -> Response:
    """Complete the flow and render a status page."""
    params = request.query_params
    logger.info("OAuth callback received: has_code=%s", bool(params.get("code")))

    services = get_services()
    try:
        result = await services.callback_processor.handle_callback(
            code=params.get("code"),
            state=params.get("state"),
            error=params.get("error"),
            error_description=params.get("error_description"),
        )
    except ToolOAuthError as e:
        return _error_response(e)
    except Exception:
        logger.exception("OAuth callback processing failed")
        return HTMLResponse(
            render_error_page("OAuth Error", GENERIC_CALLBACK_ERROR), status_code=500
        )

    return HTMLResponse(render_success_page(result.tool_id))
