"""配置管理模块。

支持从环境变量、.env 以及 config.yaml 加载配置，启动时加载一次，之后只读。

config.yaml 示例::

    default_provider: Claude
    providers:
      Claude:
        base_url: https://api.anthropic.com
        api_key: sk-ant-...
        model: claude-sonnet-4-20250514
        api_version: "2023-06-01"
      OpenAI:
        base_url: https://api.openai.com
        api_key: sk-...
        model: gpt-4o-mini
    api_keys:
      header_name: x-api-key
      owner_key: owner-secret
      guests:
        - key: guest-1
          expires_utc: 2026-12-31T00:00:00Z
          label: demo
"""

import os
import warnings
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
    YamlConfigSettingsSource,
)


class ProviderConfig(BaseModel):
    """单个厂商的连接配置（base_url / api_key / model 等）。"""

    model_config = ConfigDict(frozen=True)

    base_url: str
    api_key: str = ""
    model: str
    # Anthropic 需要 anthropic-version，其他厂商忽略
    api_version: str = ""
    max_tokens: int = Field(default=1024, ge=1)


class GuestKey(BaseModel):
    """访客 API Key，到期时间之后失效。"""

    model_config = ConfigDict(frozen=True)

    key: str
    expires_utc: datetime
    label: str = ""

    @field_validator("expires_utc")
    @classmethod
    def ensure_utc(cls, v: datetime) -> datetime:
        if v.tzinfo is None:
            return v.replace(tzinfo=timezone.utc)
        return v.astimezone(timezone.utc)


class ApiKeyConfig(BaseModel):
    """API Key 鉴权配置：owner key 永不过期，guest key 带过期时间。"""

    model_config = ConfigDict(frozen=True)

    header_name: str = "x-api-key"
    owner_key: str = ""
    guests: Tuple[GuestKey, ...] = ()

    @field_validator("header_name")
    @classmethod
    def default_header(cls, v: str) -> str:
        return v.strip() or "x-api-key"


def _find_config_file() -> Optional[Path]:
    """按优先级查找 config.yaml，找不到返回 None。"""

    candidates: List[Path] = []
    explicit = os.getenv("GATEWAY_CONFIG_FILE")
    if explicit:
        candidates.append(Path(explicit).expanduser())
    candidates.extend([
        Path.cwd() / "config.yaml",
        Path(__file__).resolve().parents[2] / "config.yaml",
    ])
    for path in candidates:
        if path.is_file():
            return path
    if explicit:
        warnings.warn(f"Config file {explicit} not found, ignored")
    return None


class Settings(BaseSettings):
    """网关配置（使用 pydantic-settings）。"""

    # ---- Provider 相关配置 ----
    default_provider: str = Field(
        default="Claude",
        description="请求未指定 provider 时使用的默认 Provider 名称",
    )
    providers: Dict[str, ProviderConfig] = Field(
        default_factory=dict,
        description="按名称配置的厂商连接信息，例如 Claude、OpenAI",
    )
    http_timeout: float = Field(default=60.0, ge=1.0, description="HTTP 超时时间（秒）")

    # ---- 鉴权 ----
    api_keys: ApiKeyConfig = Field(default_factory=ApiKeyConfig)

    # ---- 会话 ----
    session_ttl_seconds: float = Field(default=4 * 3600, gt=0, description="会话滑动过期时间（秒）")
    history_max_messages: int = Field(
        default=30,
        ge=1,
        description="发送给厂商的最大历史消息数",
    )
    session_cookie_name: str = Field(default="sid", description="会话 cookie 名称")

    # ---- 日志 ----
    log_dir: str = Field(default="logs", description="日志目录")
    log_level: str = Field(default="INFO", description="日志级别")
    log_redact_content: bool = Field(default=False, description="是否脱敏日志内容")

    model_config = SettingsConfigDict(
        env_prefix="GATEWAY_",
        env_nested_delimiter="__",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        frozen=True,
    )

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls,
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ):
        return (
            init_settings,
            env_settings,
            dotenv_settings,
            YamlConfigSettingsSource(settings_cls, yaml_file=_find_config_file()),
            file_secret_settings,
        )


settings = Settings()
