"""配置管理模块。

支持从环境变量、.env 以及 config.yaml 加载配置，优先级依次降低。
"""

import os
import warnings
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


DEFAULT_FALLBACK_MODELS = [
    "gpt-4o-mini",
    "deepseek/deepseek-r1:free",
    "mistralai/mistral-7b-instruct:free",
    "z-ai/glm-4.5-air:free",
]


def _load_config_from_yaml() -> Dict[str, Any]:
    """从 config.yaml 加载配置（若存在）。"""
    candidates = []
    explicit = os.getenv("SUPPORT_CHAT_CONFIG_FILE")
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


class Settings(BaseSettings):
    """配置设置（使用 Pydantic）。"""

    # ---- Provider 相关配置 ----
    openrouter_api_key: Optional[str] = Field(default=None, description="OpenRouter API 密钥")
    openrouter_base_url: str = Field(
        default="https://openrouter.ai/api/v1",
        description="OpenRouter API 基础URL",
    )
    site_url: Optional[str] = Field(
        default="http://localhost:3001",
        description="作为 HTTP-Referer 发给 OpenRouter 的站点地址",
    )
    app_title: Optional[str] = Field(default="Support Chat", description="作为 X-Title 发给 OpenRouter 的应用名")
    fallback_models: List[str] = Field(
        default_factory=lambda: list(DEFAULT_FALLBACK_MODELS),
        description="按顺序尝试的模型，形如 model 或 provider:model",
    )
    max_output_tokens: int = Field(default=2000, ge=1, description="单次回复的最大 token 数")
    temperature: Optional[float] = Field(default=None, ge=0.0, le=2.0, description="生成温度，为空时使用模型默认值")
    http_timeout: float = Field(default=30.0, ge=1.0, description="HTTP 超时时间（秒）")

    # ---- 存储 ----
    storage_backend: str = Field(default="json", description="会话存储后端：json 或 sqlite")
    storage_root: str = Field(default=".storage", description="JSON 存储根目录")
    sqlite_path: str = Field(default="chat.db", description="SQLite 数据库文件路径")

    # ---- 日志 ----
    log_dir: str = Field(default="logs", description="日志目录")
    log_redact_content: bool = Field(default=False, description="是否脱敏日志内容")

    # ---- 会话 ----
    max_context_messages: int = Field(default=10, ge=1, le=100, description="最大上下文消息数")
    max_message_length: int = Field(default=1000, ge=1, description="单条用户消息的最大长度")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @staticmethod
    def _config_source() -> Dict[str, Any]:
        return _load_config_from_yaml()

    @field_validator("openrouter_api_key")
    @classmethod
    def validate_api_key(cls, v: Optional[str]) -> Optional[str]:
        if v and len(v) < 10:
            raise ValueError("API key seems too short")
        return v

    @field_validator("storage_backend")
    @classmethod
    def validate_storage_backend(cls, v: str) -> str:
        v = v.lower()
        if v not in {"json", "sqlite"}:
            raise ValueError(f"Unsupported storage backend: {v!r}")
        return v

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


settings = Settings()
