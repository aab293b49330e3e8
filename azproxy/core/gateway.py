"""FastAPI app entry."""

from __future__ import annotations

import uvicorn
from fastapi import FastAPI

from azproxy.adapters.azure_openai.router import router as proxy_router
from azproxy.adapters.azure_openai.upstream import close_upstream_async_client
from azproxy.adapters.status.router import fallback_router, router as status_router
from azproxy.config.settings import settings
from azproxy.util.logger import logger

app = FastAPI(title=settings.app_name, docs_url=None, redoc_url=None, openapi_url=None)
# 顺序有意义：status 的 GET 路由先于 POST 兜底，405 兜底放最后
app.include_router(status_router)
app.include_router(proxy_router)
app.include_router(fallback_router)


@app.on_event("startup")
async def startup_check() -> None:
    if not settings.azure_api_endpoint.strip():
        logger.warning("AZURE_API_ENDPOINT is not set; proxied requests will fail with 502")
    logger.info(
        "azure proxy ready endpoint=%s api_version=%s default_key=%s",
        settings.azure_api_endpoint or "-",
        settings.azure_api_version,
        bool(settings.azure_api_key),
    )


@app.on_event("shutdown")
async def shutdown_cleanup() -> None:
    await close_upstream_async_client()


def main() -> None:
    logger.info("Starting Azure OpenAI proxy server on port %s", settings.port)
    uvicorn.run(app, host=settings.host, port=settings.port, log_level=settings.log_level.lower())


if __name__ == "__main__":
    main()
