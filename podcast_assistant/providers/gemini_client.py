"""Gemini Provider 适配器。

使用 streamGenerateContent 端点：
- URL: {base_url}/models/{model}:streamGenerateContent?key=<api_key>
- 请求体: contents / generationConfig / safetySettings

响应是一串以“可选逗号 + 换行”分隔的 JSON 记录，本模块只负责传输，
按到达顺序产出解码后的文本块，记录的拼装交给 streaming.decoder。
"""

from typing import Iterator, List, Optional

import httpx

from podcast_assistant.config.settings import settings
from podcast_assistant.domain.exceptions import (
    EmptyBody,
    NetworkError,
    RateLimitError,
    RequestFailed,
    StreamTimeout,
)
from podcast_assistant.domain.models import GenerationConfig, SafetySetting
from podcast_assistant.infrastructure.logging.logger import logger, mask_secret
from podcast_assistant.providers.registry import GEMINI_CONFIG, ModelConfig, get_model_config


NO_BODY_STATUSES = (204, 205)


class GeminiClient:
    """Gemini Provider 客户端实现。"""

    name = "gemini"

    def __init__(self, cfg=settings, model: Optional[str] = None):
        self._settings = cfg
        logical = model or getattr(cfg, "default_model", None) or "podcast-chat"
        self._model_cfg: ModelConfig = get_model_config(self.name, logical)

    @property
    def model_config(self) -> ModelConfig:
        return self._model_cfg

    @property
    def endpoint(self) -> str:
        base = getattr(self._settings, "gemini_base_url", None) or GEMINI_CONFIG.base_url
        return f"{base}/models/{self._model_cfg.provider_model}:streamGenerateContent"

    def build_payload(
        self,
        full_prompt: str,
        generation: Optional[GenerationConfig] = None,
        safety_settings: Optional[List[SafetySetting]] = None,
    ) -> dict:
        gen = generation or self._model_cfg.generation
        safety = GEMINI_CONFIG.safety_settings if safety_settings is None else safety_settings
        return {
            "contents": [{"parts": [{"text": full_prompt}]}],
            "generationConfig": gen.to_payload(),
            "safetySettings": [s.to_payload() for s in safety],
        }

    def stream_raw(self, payload: dict, api_key: str) -> Iterator[str]:
        """打开流式请求并逐块产出文本。

        非 2xx 抛出 RequestFailed（429 为 RateLimitError）；
        204/205 这类按协议不带响应体的状态抛出 EmptyBody。
        有响应体但长度为 0 时正常结束，由解码器给出兜底提示。
        """
        logger.info(
            "Sending request to Gemini API",
            extra={"extra": {"model": self._model_cfg.provider_model, "api_key": mask_secret(api_key)}},
        )
        received = 0
        try:
            with httpx.Client(timeout=self._settings.http_timeout, trust_env=False) as client:
                with client.stream(
                    "POST",
                    self.endpoint,
                    params={"key": api_key},
                    json=payload,
                    headers={"Content-Type": "application/json"},
                ) as resp:
                    logger.info("Response status", extra={"extra": {"status": resp.status_code}})
                    if resp.status_code >= 400:
                        resp.read()
                        body = resp.text
                        logger.error("API error details", extra={"extra": {"status": resp.status_code, "body": body[:500]}})
                        if resp.status_code == 429:
                            raise RateLimitError(resp.status_code, body)
                        raise RequestFailed(resp.status_code, body)
                    if resp.status_code in NO_BODY_STATUSES:
                        raise EmptyBody(status=resp.status_code)
                    for text in resp.iter_text():
                        if not text:
                            continue
                        received += len(text)
                        yield text
        except httpx.TimeoutException as e:
            raise StreamTimeout(code="STREAM_TIMEOUT", message=str(e) or "Gemini stream timed out", http_status=504)
        except httpx.RequestError as e:
            raise NetworkError(code="NETWORK_ERROR", message=str(e), http_status=503)
        if received == 0:
            logger.warning("Gemini response body was empty")
