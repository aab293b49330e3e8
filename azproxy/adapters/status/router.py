"""Health check and HTML status page."""

from __future__ import annotations

from html import escape

import httpx
from fastapi import APIRouter
from fastapi.responses import HTMLResponse, PlainTextResponse

from azproxy.config.settings import settings
from azproxy.core.diagnostics import RequestSummary, diagnostics
from azproxy.util.logger import logger


router = APIRouter()
fallback_router = APIRouter()

_STYLE = (
    "body{font-family:system-ui,-apple-system,Segoe UI,Roboto,Helvetica,Arial,sans-serif;margin:2rem;line-height:1.4}"
    " code{background:#f4f4f4;padding:.1rem .3rem;border-radius:.25rem}"
    " table{border-collapse:collapse} td,th{border:1px solid #ddd;padding:.25rem .5rem;text-align:left}"
)


async def probe_upstream(transport: httpx.AsyncBaseTransport | None = None) -> str:
    """POST an empty body upstream and report what came back.

    Any answer (even 400) proves the endpoint is reachable.
    """
    base = (settings.azure_api_endpoint or "").strip().rstrip("/")
    if not base:
        return ""
    headers = {"Content-Type": "application/json", "Accept": "application/json"}
    if settings.azure_api_key:
        headers[settings.upstream_credential_header] = settings.azure_api_key
    try:
        async with httpx.AsyncClient(timeout=settings.status_probe_timeout_seconds, transport=transport) as client:
            resp = await client.post(
                f"{base}/chat/completions",
                params={"api-version": settings.azure_api_version},
                content=b"{}",
                headers=headers,
            )
        return f"{resp.status_code} {resp.reason_phrase}"
    except httpx.HTTPError as exc:
        logger.debug("status probe failed error=%s", exc)
        return f"{type(exc).__name__}: {exc}"


def _render_recent_requests(items: list[RequestSummary]) -> str:
    if not items:
        return "<p>No requests recorded yet.</p>"
    rows = "".join(
        "<tr>"
        f"<td>{escape(item.timestamp)}</td>"
        f"<td><code>{escape(item.url)}</code></td>"
        f"<td>{escape(str(item.model))}</td>"
        f"<td>{item.message_count}</td>"
        f"<td>{escape(item.user_agent)}</td>"
        f"<td>{escape(item.authorization)}</td>"
        "</tr>"
        for item in reversed(items)
    )
    return (
        "<table><thead><tr><th>Time</th><th>URL</th><th>Model</th><th>Messages</th>"
        "<th>User-Agent</th><th>Credential</th></tr></thead>"
        f"<tbody>{rows}</tbody></table>"
    )


def render_status_page(probe_result: str) -> str:
    has_key = bool(settings.azure_api_key)
    endpoint = settings.azure_api_endpoint or "(not configured)"
    recent = diagnostics.recent_requests(settings.status_recent_requests)
    return f"""<!doctype html>
<html lang="en">
<head>
<meta charset="utf-8">
<title>azure-ai-proxy status</title>
<style>{_STYLE}</style>
</head>
<body>
  <h1>Azure AI Proxy Status</h1>
  <ul>
    <li>Azure endpoint: <code>{escape(endpoint)}</code></li>
    <li>API version: <code>{escape(settings.azure_api_version)}</code></li>
    <li>API key present: <strong>{"yes" if has_key else "no"}</strong></li>
    <li>Connectivity check (POST malformed request): <strong>{escape(probe_result or "no response")}</strong></li>
    <li>Last request successful: <strong>{"yes" if diagnostics.last_request_successful else "no"}</strong></li>
    <li>Requests logged: <strong>{diagnostics.request_count()}</strong></li>
  </ul>
  <h2>Recent requests</h2>
  {_render_recent_requests(recent)}
  <p>Health endpoint: <a href="/health">/health</a></p>
</body>
</html>"""


@router.get("/health")
def health() -> PlainTextResponse:
    logger.debug("health check")
    return PlainTextResponse("OK")


@router.get("/")
@router.get("/status")
async def status_page() -> HTMLResponse:
    probe_result = await probe_upstream()
    return HTMLResponse(render_status_page(probe_result))


@fallback_router.api_route(
    "/{subpath:path}",
    methods=["GET", "HEAD", "PUT", "PATCH", "DELETE", "OPTIONS"],
)
async def method_not_allowed(subpath: str) -> PlainTextResponse:
    return PlainTextResponse("Method Not Allowed", status_code=405)
