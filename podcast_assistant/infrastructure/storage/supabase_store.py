"""Supabase 会话存储。

通过 supabase 客户端访问三张表：

- conversations{id, title, user_id, created_at, updated_at}
- messages{id, conversation_id, role, content, timestamp}
- default_api_keys{service_name, api_key}

所有与会话相关的查询都按当前登录用户的 user_id 过滤；messages 表没有 user_id 列，
因此通过 conversations!inner 关联过滤。
"""

from typing import Any, Dict, List, Optional

from supabase import Client

from podcast_assistant.config.settings import settings
from podcast_assistant.domain.conversation import (
    DEFAULT_CONVERSATION_TITLE,
    Conversation,
    ConversationStore,
    derive_title,
)
from podcast_assistant.domain.exceptions import AuthRequired, NotFoundError, PersistenceError
from podcast_assistant.domain.models import Message, format_timestamp, parse_timestamp, utcnow
from podcast_assistant.infrastructure.logging.logger import logger


CONVERSATIONS = "conversations"
MESSAGES = "messages"
DEFAULT_API_KEYS = "default_api_keys"


class SupabaseConversationStore(ConversationStore):
    def __init__(self, client: Client, title_max_length: Optional[int] = None):
        self._client = client
        self._title_max_length = title_max_length or settings.title_max_length

    def create_conversation(self, title: str = DEFAULT_CONVERSATION_TITLE) -> Conversation:
        uid = self._require_user()
        rows = self._execute(
            self._client.table(CONVERSATIONS).insert(
                {"title": derive_title(title, self._title_max_length), "user_id": uid}
            ),
            "create_conversation",
        )
        if not rows:
            raise PersistenceError(code="STORE_WRITE_ERROR", message="Conversation insert returned no row")
        conv = self._to_conversation(rows[0])
        logger.info("Created conversation", extra={"extra": {"conversation_id": conv.id}})
        return conv

    def get_conversation(self, conversation_id: str) -> Conversation:
        uid = self._require_user()
        rows = self._execute(
            self._client.table(CONVERSATIONS)
            .select("*")
            .eq("id", conversation_id)
            .eq("user_id", uid)
            .limit(1),
            "get_conversation",
        )
        if not rows:
            raise NotFoundError(code="CONVERSATION_NOT_FOUND", message=conversation_id, http_status=404)
        return self._to_conversation(rows[0])

    def list_conversations(self) -> List[Conversation]:
        uid = self._require_user()
        rows = self._execute(
            self._client.table(CONVERSATIONS)
            .select("*")
            .eq("user_id", uid)
            .order("updated_at", desc=True),
            "list_conversations",
        )
        logger.info("Retrieved conversations", extra={"extra": {"count": len(rows)}})
        return [self._to_conversation(r) for r in rows]

    def add_message(self, conversation_id: str, message: Message) -> None:
        self.get_conversation(conversation_id)
        uid = self._require_user()
        self._execute(
            self._client.table(MESSAGES).insert(
                {
                    "id": message.id,
                    "conversation_id": conversation_id,
                    "role": message.role,
                    "content": message.content,
                    "timestamp": format_timestamp(message.timestamp),
                }
            ),
            "add_message",
        )
        self._execute(
            self._client.table(CONVERSATIONS)
            .update({"updated_at": format_timestamp(utcnow())})
            .eq("id", conversation_id)
            .eq("user_id", uid),
            "touch_conversation",
        )

    def list_messages(self, conversation_id: str) -> List[Message]:
        uid = self._require_user()
        rows = self._execute(
            self._client.table(MESSAGES)
            .select("id, conversation_id, role, content, timestamp, conversations!inner(user_id)")
            .eq("conversation_id", conversation_id)
            .eq("conversations.user_id", uid)
            .order("timestamp"),
            "list_messages",
        )
        items: List[Message] = []
        for row in rows:
            try:
                items.append(Message.from_dict(row))
            except (ValueError, KeyError) as e:
                logger.warning("Skipping unreadable message row", extra={"extra": {"conversation_id": conversation_id, "error": str(e)}})
        return items

    def update_conversation_title(self, conversation_id: str, title: str) -> None:
        uid = self._require_user()
        rows = self._execute(
            self._client.table(CONVERSATIONS)
            .update({"title": derive_title(title, self._title_max_length), "updated_at": format_timestamp(utcnow())})
            .eq("id", conversation_id)
            .eq("user_id", uid),
            "update_conversation_title",
        )
        if not rows:
            raise NotFoundError(code="CONVERSATION_NOT_FOUND", message=conversation_id, http_status=404)
        logger.info("Updated conversation title", extra={"extra": {"conversation_id": conversation_id}})

    def delete_conversation(self, conversation_id: str) -> None:
        self.get_conversation(conversation_id)
        uid = self._require_user()
        # messages 引用 conversations，必须先删消息
        self._execute(
            self._client.table(MESSAGES).delete().eq("conversation_id", conversation_id),
            "delete_messages",
        )
        self._execute(
            self._client.table(CONVERSATIONS).delete().eq("id", conversation_id).eq("user_id", uid),
            "delete_conversation",
        )
        logger.info("Deleted conversation", extra={"extra": {"conversation_id": conversation_id}})

    def recent_user_messages(self, limit: int) -> List[str]:
        uid = self._require_user()
        rows = self._execute(
            self._client.table(MESSAGES)
            .select("content, role, conversations!inner(user_id)")
            .eq("role", "user")
            .eq("conversations.user_id", uid)
            .order("timestamp", desc=True)
            .limit(limit),
            "recent_user_messages",
        )
        return [r.get("content") or "" for r in rows if r.get("role") == "user"]

    def get_default_api_key(self, service_name: str) -> Optional[str]:
        try:
            rows = self._execute(
                self._client.table(DEFAULT_API_KEYS)
                .select("api_key")
                .eq("service_name", service_name)
                .limit(1),
                "get_default_api_key",
            )
        except PersistenceError as e:
            logger.error("Error fetching default API key", extra={"extra": {"service_name": service_name, "error": e.message}})
            return None
        if not rows:
            return None
        return rows[0].get("api_key") or None

    def _require_user(self) -> str:
        try:
            resp = self._client.auth.get_user()
        except Exception as e:
            raise AuthRequired(message=f"Unable to resolve authenticated user: {e}")
        user = getattr(resp, "user", None) if resp is not None else None
        if user is None or not getattr(user, "id", None):
            raise AuthRequired()
        return str(user.id)

    @staticmethod
    def _execute(query: Any, action: str) -> List[Dict[str, Any]]:
        try:
            resp = query.execute()
        except Exception as e:
            logger.error("Supabase call failed", extra={"extra": {"action": action, "error": str(e)}})
            raise PersistenceError(code="STORE_REMOTE_ERROR", message=str(e), action=action)
        return list(resp.data or [])

    @staticmethod
    def _to_conversation(data: Dict[str, Any]) -> Conversation:
        return Conversation(
            id=str(data["id"]),
            title=data.get("title") or "",
            created_at=parse_timestamp(data["created_at"]),
            updated_at=parse_timestamp(data["updated_at"]),
            user_id=data.get("user_id"),
        )
