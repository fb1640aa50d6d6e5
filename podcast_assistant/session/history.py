"""会话历史的本地副本。

远端存储不可用时，仍可以从本地键值存储恢复最近的消息列表。
"""

from typing import List, Optional

from podcast_assistant.domain.models import Message
from podcast_assistant.infrastructure.logging.logger import logger
from podcast_assistant.infrastructure.storage.local_state import HISTORY_KEY, LocalStateStore


class LocalHistory:
    def __init__(self, local_state: LocalStateStore):
        self._local_state = local_state
        self._messages: Optional[List[Message]] = None

    def add(self, message: Message) -> None:
        messages = self.load()
        messages.append(message)
        self._local_state.set(HISTORY_KEY, [m.to_dict() for m in messages])

    def load(self) -> List[Message]:
        if self._messages is not None:
            return self._messages
        self._messages = []
        raw = self._local_state.get(HISTORY_KEY)
        if not raw:
            return self._messages
        try:
            self._messages = [Message.from_dict(item) for item in raw]
        except (TypeError, ValueError, KeyError) as e:
            logger.error("Failed to parse conversation history", extra={"extra": {"error": str(e)}})
            self._messages = []
        return self._messages

    def clear(self) -> None:
        self._messages = []
        self._local_state.delete(HISTORY_KEY)
