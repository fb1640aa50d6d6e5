"""流式响应引擎。

负责一次生成请求的完整生命周期：校验密钥、拼装提示词、打开 Provider 流、
把原始文本块交给 IncrementalDecoder，并按解析顺序把文本片段交给调用方。
引擎本身不做持久化。
"""

import logging
import time
from typing import Any, Callable, Dict, Iterable, Iterator, List
from uuid import uuid4

from podcast_assistant.config.settings import settings
from podcast_assistant.domain.exceptions import CredentialMissing, StreamTimeout, ValidationError
from podcast_assistant.domain.models import GenerationRequest, Message
from podcast_assistant.infrastructure.logging.logger import logger
from podcast_assistant.prompts import build_full_prompt
from podcast_assistant.providers.base import ProviderClient
from podcast_assistant.streaming.decoder import IncrementalDecoder


FragmentCallback = Callable[[str], None]


class StreamingResponseEngine:
    def __init__(
        self,
        provider_client: ProviderClient,
        cfg=settings,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._provider_client = provider_client
        self._settings = cfg
        self._clock = clock

    def stream_fragments(
        self,
        prompt: str,
        past_messages: Iterable[Message] = (),
        credential: str = "",
        long_term_memory: str = "",
    ) -> Iterator[str]:
        """返回惰性、有限、不可重启的片段迭代器。

        密钥与提示词在这里立即校验，任何网络调用之前就会抛出
        CredentialMissing / ValidationError。
        """
        if not credential:
            raise CredentialMissing()
        if not prompt or not prompt.strip():
            raise ValidationError(code="EMPTY_PROMPT", message="Prompt must not be empty")
        request = GenerationRequest(
            prompt=prompt,
            past_messages=list(past_messages),
            long_term_memory=long_term_memory or "",
        )
        return self._run(request, credential)

    def generate_streaming_response(
        self,
        prompt: str,
        past_messages: Iterable[Message],
        credential: str,
        on_fragment: FragmentCallback,
        long_term_memory: str = "",
    ) -> str:
        """推送形式：每解析出一个片段就同步调用 on_fragment，返回拼接后的全文。"""
        pieces: List[str] = []
        for fragment in self.stream_fragments(prompt, past_messages, credential, long_term_memory):
            pieces.append(fragment)
            on_fragment(fragment)
        return "".join(pieces)

    def _run(self, request: GenerationRequest, credential: str) -> Iterator[str]:
        log_ctx: Dict[str, Any] = {"stream_id": f"st-{uuid4().hex}"}
        max_context = getattr(self._settings, "max_context_messages", 10)
        recent = request.past_messages[-max_context:]
        full_prompt = build_full_prompt(request.prompt, recent, request.long_term_memory)
        payload = self._provider_client.build_payload(
            full_prompt,
            generation=request.generation,
            safety_settings=request.safety_settings,
        )
        self._log(
            logging.INFO,
            "Opening generation stream",
            log_ctx,
            provider=self._provider_client.name,
            context_messages=len(recent),
            has_long_term_memory=bool(request.long_term_memory),
        )

        decoder = IncrementalDecoder()
        deadline = self._clock() + getattr(self._settings, "stream_timeout", 120.0)
        raw = self._provider_client.stream_raw(payload, credential)
        chunks = 0
        try:
            for chunk in raw:
                chunks += 1
                for fragment in decoder.feed(chunk):
                    yield fragment
                if self._clock() > deadline:
                    self._log(logging.WARNING, "Stream deadline exceeded", log_ctx, chunks=chunks)
                    raise StreamTimeout(code="STREAM_TIMEOUT", message="Gemini stream timed out", http_status=504)
        finally:
            close = getattr(raw, "close", None)
            if close is not None:
                close()

        tail = decoder.finish()
        if decoder.salvaged:
            self._log(logging.WARNING, "No complete JSON records, salvaged text from buffer", log_ctx)
        if decoder.fallback_used:
            self._log(logging.WARNING, "No text was extracted from the response", log_ctx, buffer_length=len(decoder.buffer))
        for fragment in tail:
            yield fragment
        self._log(
            logging.INFO,
            "Stream processing completed",
            log_ctx,
            chunks=chunks,
            fragments=decoder.emitted,
            consumed=decoder.consumed,
        )

    @staticmethod
    def _log(level: int, message: str, log_ctx: Dict[str, Any], **fields: Any) -> None:
        payload = dict(log_ctx)
        payload.update(fields)
        logger.log(level, message, extra={"extra": payload})
