"""配置管理模块。

支持从 .env、config.yaml 以及环境变量加载配置。
"""

import os
import warnings
from pathlib import Path
from typing import Any, Dict, Literal, Optional

import yaml
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def _load_config_from_yaml() -> Dict[str, Any]:
    """从 config.yaml 加载配置（若存在）。"""
    candidates = []
    explicit = os.getenv("AGENT_CONFIG_FILE")
    if explicit:
        candidates.append(Path(explicit).expanduser())
    candidates.extend([
        Path.cwd() / "config.yaml",
        Path(__file__).resolve().parents[2] / "config.yaml",
    ])

    seen: set[Path] = set()
    for path in candidates:
        if not path or path in seen:
            continue
        seen.add(path)
        try:
            if path.exists():
                data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
                if isinstance(data, dict):
                    return data
                warnings.warn(f"Config file {path} is not a mapping, ignored")
        except (OSError, yaml.YAMLError) as exc:
            warnings.warn(f"Failed to read config file {path}: {exc}")
    return {}


class AgentSettings(BaseSettings):
    """配置设置（使用 Pydantic）。"""

    # ---- Provider 相关配置 ----
    default_provider: str = Field(
        default="kimi",
        description="默认使用的 Provider 名称，例如 kimi、glm、anthropic",
    )
    default_model: str = Field(
        default="chat",
        description="逻辑模型名，由 registry 映射为具体厂商模型",
    )
    temperature: float = Field(default=0.7, ge=0.0, le=2.0, description="生成温度")

    kimi_api_key: Optional[str] = Field(default=None, description="Kimi API 密钥")
    kimi_base_url: str = Field(default="https://api.moonshot.cn/v1", description="Kimi API 基础URL")
    glm_api_key: Optional[str] = Field(default=None, description="GLM API 密钥")
    glm_base_url: str = Field(
        default="https://open.bigmodel.cn/api/paas/v4",
        description="GLM API 基础URL",
    )
    anthropic_api_key: Optional[str] = Field(default=None, description="Anthropic API 密钥")
    anthropic_base_url: str = Field(
        default="https://api.anthropic.com/v1",
        description="Anthropic OpenAI 兼容接口基础URL",
    )
    http_timeout: float = Field(default=30.0, ge=1.0, description="HTTP 超时时间（秒）")

    # ---- 存储与日志 ----
    storage_root: str = Field(default=".storage", description="存储根目录")
    checkpoint_backend: Literal["memory", "json"] = Field(
        default="memory",
        description="Checkpoint 存储后端：memory 进程内，json 落盘",
    )
    log_dir: str = Field(default="logs", description="日志目录")
    log_level: str = Field(default="INFO", description="日志级别")
    log_redact_content: bool = Field(default=False, description="是否脱敏日志内容")

    # ---- Agent 循环 ----
    max_tool_rounds: int = Field(
        default=10,
        ge=1,
        le=20,
        description="单次运行内工具调用最大轮数（硬上限 20）",
    )
    trim_max_units: int = Field(default=10, ge=1, description="发给模型的历史上限")
    trim_unit: Literal["messages", "tokens"] = Field(default="messages", description="历史上限的计量单位")
    trim_include_system: bool = Field(default=True, description="裁剪时是否始终保留 system 消息")
    trim_start_on: Literal["user", "assistant", "tool", "system"] = Field(
        default="user",
        description="裁剪窗口必须起始于的消息角色",
    )
    cache_hints_enabled: bool = Field(default=True, description="是否为消息添加缓存断点")

    # ---- 工具 ----
    tool_endpoint: Optional[str] = Field(default=None, description="远程工具服务地址")
    tool_api_key: Optional[str] = Field(default=None, description="远程工具服务密钥")

    # ---- HTTP 服务 ----
    api_tokens: Dict[str, str] = Field(
        default_factory=dict,
        description="Bearer token 到 user id 的映射",
    )
    server_host: str = Field(default="127.0.0.1", description="监听地址")
    server_port: int = Field(default=8000, ge=1, le=65535, description="监听端口")
    stream_queue_size: int = Field(default=1, ge=1, description="流式响应在途帧数量上限")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @staticmethod
    def _config_source() -> Dict[str, Any]:
        return _load_config_from_yaml()

    @field_validator("kimi_api_key", "glm_api_key", "anthropic_api_key")
    @classmethod
    def validate_api_key(cls, v: Optional[str]) -> Optional[str]:
        if v and len(v) < 10:
            raise ValueError("API key seems too short")
        return v

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        level = v.upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Unknown log level: {v}")
        return level

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls,
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ):
        return (
            init_settings,
            env_settings,
            dotenv_settings,
            cls._config_source,
            file_secret_settings,
        )

    def provider_api_key(self, provider: str) -> Optional[str]:
        return getattr(self, f"{provider.lower()}_api_key", None)

    def provider_base_url(self, provider: str) -> Optional[str]:
        return getattr(self, f"{provider.lower()}_base_url", None)


settings = AgentSettings()

# 类型别名，让外部代码可以使用 Settings 类型
Settings = AgentSettings
