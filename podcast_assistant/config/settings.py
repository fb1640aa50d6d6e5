"""配置管理模块。

支持从环境变量、.env 以及 config.yaml 加载配置。
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
    explicit = os.getenv("PODCAST_ASSISTANT_CONFIG_FILE")
    if explicit:
        candidates.append(Path(explicit).expanduser())
    candidates.extend([
        Path.cwd() / "config.yaml",
        Path(__file__).resolve().parents[2] / "config.yaml",
        Path(__file__).resolve().parents[1] / "config.yaml",
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


class PodcastSettings(BaseSettings):
    """配置设置（使用 Pydantic）。"""

    # ---- 生成服务（Gemini） ----
    gemini_base_url: str = Field(
        default="https://generativelanguage.googleapis.com/v1beta",
        description="Gemini API 基础URL",
    )
    default_model: str = Field(
        default="podcast-chat",
        description="逻辑模型名，由 registry 映射为具体厂商模型",
    )
    default_key_service: str = Field(
        default="gemini",
        description="default_api_keys 表中共享密钥的 service_name",
    )
    http_timeout: float = Field(default=30.0, ge=1.0, description="单次 HTTP 读写超时（秒）")
    stream_timeout: float = Field(default=120.0, ge=1.0, description="整个流式响应的最长时间（秒）")
    max_context_messages: int = Field(default=10, ge=1, le=100, description="请求中携带的最近消息数")
    long_term_memory_limit: int = Field(default=50, ge=1, description="长期记忆摘要使用的历史提问数")
    interests_limit: int = Field(default=100, ge=1, description="兴趣提取使用的历史提问数")
    title_max_length: int = Field(default=30, ge=1, description="会话标题最大长度")

    # ---- 持久化 ----
    store_backend: Literal["auto", "supabase", "json"] = Field(
        default="auto",
        description="会话存储后端；auto 表示配置了 Supabase 时使用 Supabase，否则使用本地 JSON",
    )
    supabase_url: Optional[str] = Field(default=None, description="Supabase 项目 URL")
    supabase_key: Optional[str] = Field(default=None, description="Supabase anon key")
    storage_root: str = Field(default=".storage", description="本地 JSON 存储根目录")
    local_user_id: Optional[str] = Field(default="local", description="本地 JSON 存储使用的用户标识")
    local_state_path: str = Field(default=".storage/local_state.json", description="本地键值存储文件")

    # ---- 日志 ----
    log_dir: str = Field(default="logs", description="日志目录")
    log_redact_content: bool = Field(default=False, description="是否脱敏日志内容")

    model_config = SettingsConfigDict(
        env_prefix="PODCAST_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @staticmethod
    def _config_source() -> Dict[str, Any]:
        return _load_config_from_yaml()

    @field_validator("supabase_key")
    @classmethod
    def validate_supabase_key(cls, v: Optional[str]) -> Optional[str]:
        if v and len(v) < 10:
            raise ValueError("Supabase key seems too short")
        return v

    @field_validator("gemini_base_url", "supabase_url")
    @classmethod
    def strip_trailing_slash(cls, v: Optional[str]) -> Optional[str]:
        return v.rstrip("/") if v else v

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

    @property
    def use_supabase(self) -> bool:
        if self.store_backend == "supabase":
            return True
        if self.store_backend == "json":
            return False
        return bool(self.supabase_url and self.supabase_key)


settings = PodcastSettings()

# 类型别名，让外部代码可以使用 Settings 类型
Settings = PodcastSettings
