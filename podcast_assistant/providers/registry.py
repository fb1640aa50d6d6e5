"""Provider 与模型配置。

本模块将“逻辑模型名”与“具体厂商模型名”解耦：

- 逻辑名（logical_name）：在代码里使用的统一名称，例如 "podcast-chat"。
- provider_model：厂商实际提供的模型 ID，例如 "gemini-2.0-flash"。

生成参数和安全阈值也集中在这里，每次请求都会原样带上。"""

from dataclasses import dataclass, field
from typing import Dict, List, Mapping

from podcast_assistant.domain.models import GenerationConfig, SafetySetting


@dataclass
class ModelConfig:
    """单个逻辑模型的配置。"""

    logical_name: str
    provider_model: str
    generation: GenerationConfig = field(default_factory=GenerationConfig)


@dataclass
class ProviderConfig:
    """某个 Provider 的整体配置。"""

    name: str
    base_url: str
    models: Dict[str, ModelConfig]
    safety_settings: List[SafetySetting] = field(default_factory=list)


HARM_CATEGORIES = (
    "HARM_CATEGORY_HARASSMENT",
    "HARM_CATEGORY_HATE_SPEECH",
    "HARM_CATEGORY_SEXUALLY_EXPLICIT",
    "HARM_CATEGORY_DANGEROUS_CONTENT",
)


def default_safety_settings() -> List[SafetySetting]:
    return [SafetySetting(category=c, threshold="BLOCK_MEDIUM_AND_ABOVE") for c in HARM_CATEGORIES]


GEMINI_CONFIG = ProviderConfig(
    name="gemini",
    base_url="https://generativelanguage.googleapis.com/v1beta",
    models={
        "podcast-chat": ModelConfig(
            logical_name="podcast-chat",
            provider_model="gemini-2.0-flash",
            generation=GenerationConfig(temperature=0.7, top_p=0.8, top_k=40, max_output_tokens=2048),
        )
    },
    safety_settings=default_safety_settings(),
)


PROVIDER_REGISTRY: Mapping[str, ProviderConfig] = {
    "gemini": GEMINI_CONFIG,
}


def get_provider_config(name: str) -> ProviderConfig:
    """根据名称获取 ProviderConfig，名称不区分大小写。"""

    key = name.lower()
    for k, cfg in PROVIDER_REGISTRY.items():
        if k.lower() == key:
            return cfg
    raise KeyError(f"Unknown provider: {name!r}")


def get_model_config(provider: str, logical_name: str) -> ModelConfig:
    cfg = get_provider_config(provider)
    try:
        return cfg.models[logical_name]
    except KeyError:
        raise KeyError(f"Unknown model {logical_name!r} for provider {provider!r}") from None
