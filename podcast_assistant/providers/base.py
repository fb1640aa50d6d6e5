"""Provider 抽象接口。

流式引擎不直接依赖具体厂商的 HTTP 细节，而是依赖此协议：

- 每个厂商实现一个 ProviderClient（如 GeminiClient）。
- 负责：把完整提示词与生成参数转成请求体，打开流式连接，
  并按到达顺序产出原始文本块（尚未解析的 JSON 片段）。

JSON 片段的增量解析由 streaming.decoder 负责，与传输层分离。
"""

from typing import Iterator, List, Optional, Protocol

from podcast_assistant.domain.models import GenerationConfig, SafetySetting


class ProviderClient(Protocol):
    """LLM Provider 客户端协议。

    实现者需要提供：
    - name: Provider 名称，用于日志。
    - build_payload(...): 生成请求体。
    - stream_raw(payload, api_key): 打开流式请求，逐块产出解码后的文本。
    """

    name: str

    def build_payload(
        self,
        full_prompt: str,
        generation: Optional[GenerationConfig] = None,
        safety_settings: Optional[List[SafetySetting]] = None,
    ) -> dict:
        ...

    def stream_raw(self, payload: dict, api_key: str) -> Iterator[str]:
        ...
