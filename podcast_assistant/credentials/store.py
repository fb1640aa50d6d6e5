"""Gemini API 密钥的解析与保存。

读取顺序：内存缓存 → 远端共享密钥（default_api_keys）→ 本地持久化的值。
显式设置会同时写入本地存储与内存，之后不会被自动失效。
密钥只交给生成服务，不会写进会话存储。
"""

from typing import Optional

from podcast_assistant.domain.conversation import DefaultKeySource
from podcast_assistant.domain.exceptions import ValidationError
from podcast_assistant.infrastructure.logging.logger import logger
from podcast_assistant.infrastructure.storage.local_state import API_KEY_KEY, LocalStateStore


class CredentialStore:
    def __init__(
        self,
        local_state: LocalStateStore,
        default_source: Optional[DefaultKeySource] = None,
        service_name: str = "gemini",
    ):
        self._local_state = local_state
        self._default_source = default_source
        self._service_name = service_name
        self._cached = ""

    def get_api_key(self) -> str:
        if self._cached:
            return self._cached
        if self._default_source is not None:
            remote = self._default_source.get_default_api_key(self._service_name)
            if remote:
                logger.info("Using shared default API key", extra={"extra": {"service_name": self._service_name}})
                self._cached = remote
                return self._cached
        stored = self._local_state.get(API_KEY_KEY)
        if isinstance(stored, str) and stored:
            self._cached = stored
        return self._cached

    def set_api_key(self, key: str) -> None:
        key = (key or "").strip()
        if not key:
            raise ValidationError(code="INVALID_API_KEY", message="Please enter a valid API key")
        self._local_state.set(API_KEY_KEY, key)
        self._cached = key

    def has_api_key(self) -> bool:
        return bool(self.get_api_key())

    def clear(self) -> None:
        self._cached = ""
        self._local_state.delete(API_KEY_KEY)
