from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional, Protocol

from .models import Message


DEFAULT_CONVERSATION_TITLE = "New Conversation"
TITLE_MAX_LENGTH = 30
TITLE_ELLIPSIS = "..."


@dataclass
class Conversation:
    id: str
    title: str
    created_at: datetime
    updated_at: datetime
    user_id: Optional[str] = None


def derive_title(content: str, max_length: int = TITLE_MAX_LENGTH) -> str:
    """截断首条消息作为会话标题，超长时追加省略号。"""
    if len(content) > max_length:
        return content[:max_length] + TITLE_ELLIPSIS
    return content


class ConversationStore(Protocol):
    def create_conversation(self, title: str = DEFAULT_CONVERSATION_TITLE) -> Conversation:
        ...

    def get_conversation(self, conversation_id: str) -> Conversation:
        ...

    def list_conversations(self) -> List[Conversation]:
        ...

    def add_message(self, conversation_id: str, message: Message) -> None:
        ...

    def list_messages(self, conversation_id: str) -> List[Message]:
        ...

    def update_conversation_title(self, conversation_id: str, title: str) -> None:
        ...

    def delete_conversation(self, conversation_id: str) -> None:
        ...

    def recent_user_messages(self, limit: int) -> List[str]:
        ...


class DefaultKeySource(Protocol):
    def get_default_api_key(self, service_name: str) -> Optional[str]:
        ...
