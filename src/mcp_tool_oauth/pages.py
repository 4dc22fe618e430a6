"""Minimal HTML status pages for the OAuth login and callback routes."""

from __future__ import annotations

import html

import msgspec

_PAGE_TEMPLATE = """<!DOCTYPE html>
<html>
<head>
<title>{title}</title>
<meta charset="utf-8">
<style>
body {{ font-family: sans-serif; display: flex; justify-content: center;
       align-items: center; height: 100vh; margin: 0; background: #f5f5f5; }}
.box {{ background: white; padding: 40px; border-radius: 8px;
        box-shadow: 0 2px 10px rgba(0,0,0,0.1); text-align: center; max-width: 480px; }}
pre {{ text-align: left; white-space: pre-wrap; font-size: 12px; color: #666; }}
</style>
</head>
<body><div class="box">{body}</div>{script}</body>
</html>"""

_SUCCESS_SCRIPT = """<script>
let countdown = 3;
const countdownEl = document.getElementById('countdown');
if (window.opener) {{
  window.opener.postMessage({message}, '*');
}}
const timer = setInterval(() => {{
  countdown--;
  countdownEl.textContent = countdown;
  if (countdown <= 0) {{
    clearInterval(timer);
    window.close();
  }}
}}, 1000);
// Fallback close
setTimeout(() => window.close(), 3000);
</script>"""


def _script_json(value: object) -> str:
    # Keep "</script>" in data from terminating the script element
    return msgspec.json.encode(value).decode().replace("</", "<\\/")


def render_success_page(tool_id: str) -> str:
    """Page that notifies the opener window and closes itself."""
    message = _script_json({"type": "oauth-success", "toolId": tool_id})
    return _PAGE_TEMPLATE.format(
        title="Authentication Complete",
        body=(
            "<h2>Authentication successful</h2>"
            '<p>Closing in <span id="countdown">3</span> seconds...</p>'
        ),
        script=_SUCCESS_SCRIPT.format(message=message),
    )


def render_error_page(title: str, message: str, detail: str | None = None) -> str:
    """Error page. ``detail`` must only be passed in development mode."""
    body = f"<h2>{html.escape(title)}</h2><p>{html.escape(message)}</p>"
    if detail:
        body += f"<pre>{html.escape(detail)}</pre>"
    return _PAGE_TEMPLATE.format(title=html.escape(title), body=body, script="")
