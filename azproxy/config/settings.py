"""Runtime settings."""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(extra="ignore")

    app_name: str = "azure-ai-proxy"
    log_level: str = "info"
    # 为空时只输出到 stderr
    log_dir: str = "logs"
    log_file_max_bytes: int = Field(default=10 * 1024 * 1024, gt=0)
    log_file_backup_count: int = Field(default=10, ge=0)
    host: str = "0.0.0.0"
    port: int = 8000

    # 例如 https://<resource>.cognitiveservices.azure.com/openai/deployments/<deployment>
    azure_api_endpoint: str = ""
    azure_api_version: str = "2025-01-01-preview"
    # 请求未携带 Authorization 时使用
    azure_api_key: str = ""

    upstream_credential_header: str = "api-key"
    fallback_user_agent: str = "azure-ai-proxy"
    # 仅限制建连；流式读取不设超时，依赖客户端断开时取消
    upstream_connect_timeout_seconds: float = 30.0
    upstream_max_connections: int = 100
    upstream_max_keepalive_connections: int = 20

    status_probe_timeout_seconds: float = Field(default=1.5, gt=0.0)
    request_log_max_entries: int = Field(default=1000, ge=1)
    status_recent_requests: int = Field(default=10, ge=0)


settings = Settings()
