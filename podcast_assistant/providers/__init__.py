"""LLM Provider 集成层。

该包下的模块负责：
- 定义 Provider 抽象接口 (base)。
- 维护模型、生成参数与安全阈值配置 (registry)。
- 提供具体实现 (gemini_client)。
"""

from typing import Optional

from podcast_assistant.config.settings import settings
from podcast_assistant.providers.base import ProviderClient
from podcast_assistant.providers.gemini_client import GeminiClient


def create_provider(name: Optional[str] = None, cfg=None) -> ProviderClient:
    """根据名称创建 Provider 实例，目前只有 gemini。"""

    provider_name = (name or "gemini").lower()
    if provider_name != "gemini":
        raise KeyError(f"Unknown provider: {provider_name!r}")
    return GeminiClient(cfg or settings)
