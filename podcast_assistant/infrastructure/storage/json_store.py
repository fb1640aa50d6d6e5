import json
import os
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional
from uuid import uuid4

from podcast_assistant.config.settings import settings
from podcast_assistant.domain.conversation import (
    DEFAULT_CONVERSATION_TITLE,
    Conversation,
    ConversationStore,
    derive_title,
)
from podcast_assistant.domain.exceptions import AuthRequired, NotFoundError, PersistenceError
from podcast_assistant.domain.models import Message, format_timestamp, parse_timestamp
from podcast_assistant.infrastructure.logging.logger import logger


class JsonConversationStore(ConversationStore):
    """本地目录形式的会话存储。

    每个会话一个目录：meta.json 保存会话元数据，messages.jsonl 逐行追加消息。
    user_id 为 None 时视为未登录，所有操作抛出 AuthRequired。
    """

    def __init__(self, root: str | Path | None = None, user_id: Optional[str] = None, title_max_length: Optional[int] = None):
        self._root = Path(root or settings.storage_root).resolve()
        self._conv_root = self._root / "conversations"
        self._conv_root.mkdir(parents=True, exist_ok=True)
        self._user_id = user_id
        self._title_max_length = title_max_length or settings.title_max_length
        self._last_ts: Optional[datetime] = None

    def create_conversation(self, title: str = DEFAULT_CONVERSATION_TITLE) -> Conversation:
        uid = self._require_user()
        cid = str(uuid4())
        cdir = self._conv_root / cid
        try:
            cdir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise PersistenceError(code="STORE_WRITE_ERROR", message=str(e))
        now = self._now()
        conv = Conversation(
            id=cid,
            title=derive_title(title, self._title_max_length),
            created_at=now,
            updated_at=now,
            user_id=uid,
        )
        self._write_meta(cdir, conv)
        logger.info("Created conversation", extra={"extra": {"conversation_id": cid}})
        return conv

    def get_conversation(self, conversation_id: str) -> Conversation:
        uid = self._require_user()
        conv = self._read_meta(self._conv_root / conversation_id)
        if conv is None or conv.user_id != uid:
            raise NotFoundError(code="CONVERSATION_NOT_FOUND", message=conversation_id, http_status=404)
        return conv

    def list_conversations(self) -> List[Conversation]:
        uid = self._require_user()
        items: List[Conversation] = []
        for cdir in self._conv_root.glob("*/"):
            try:
                conv = self._read_meta(cdir)
            except PersistenceError:
                continue
            if conv is not None and conv.user_id == uid:
                items.append(conv)
        items.sort(key=lambda c: c.updated_at, reverse=True)
        return items

    def add_message(self, conversation_id: str, message: Message) -> None:
        conv = self.get_conversation(conversation_id)
        cdir = self._conv_root / conversation_id
        msgs_path = cdir / "messages.jsonl"
        try:
            payload = message.to_dict()
            payload["conversation_id"] = conversation_id
            line = json.dumps(payload, ensure_ascii=False)
            with msgs_path.open("a", encoding="utf-8") as f:
                f.write(line + "\n")
        except OSError as e:
            raise PersistenceError(code="STORE_WRITE_ERROR", message=str(e))
        conv.updated_at = self._now()
        self._write_meta(cdir, conv)

    def list_messages(self, conversation_id: str) -> List[Message]:
        uid = self._require_user()
        cdir = self._conv_root / conversation_id
        items: List[Message] = []
        conv = self._read_meta(cdir)
        if conv is None or conv.user_id != uid:
            return items
        msgs_path = cdir / "messages.jsonl"
        if not msgs_path.exists():
            return items
        for line in msgs_path.read_text(encoding="utf-8").splitlines():
            if not line.strip():
                continue
            try:
                items.append(Message.from_dict(json.loads(line)))
            except (ValueError, KeyError) as e:
                logger.warning("Skipping unreadable message line", extra={"extra": {"conversation_id": conversation_id, "error": str(e)}})
        items.sort(key=lambda m: m.timestamp)
        return items

    def update_conversation_title(self, conversation_id: str, title: str) -> None:
        """更新会话标题，同时刷新 updated_at。"""
        conv = self.get_conversation(conversation_id)
        conv.title = derive_title(title, self._title_max_length)
        conv.updated_at = self._now()
        self._write_meta(self._conv_root / conversation_id, conv)

    def delete_conversation(self, conversation_id: str) -> None:
        self.get_conversation(conversation_id)
        cdir = self._conv_root / conversation_id
        try:
            # 先删消息，再删会话元数据
            msgs_path = cdir / "messages.jsonl"
            if msgs_path.exists():
                msgs_path.unlink()
            (cdir / "meta.json").unlink()
            for leftover in cdir.iterdir():
                leftover.unlink()
            cdir.rmdir()
        except OSError as e:
            raise PersistenceError(code="STORE_DELETE_ERROR", message=str(e))
        logger.info("Deleted conversation", extra={"extra": {"conversation_id": conversation_id}})

    def recent_user_messages(self, limit: int) -> List[str]:
        uid = self._require_user()
        found: List[Message] = []
        for cdir in self._conv_root.glob("*/"):
            try:
                conv = self._read_meta(cdir)
            except PersistenceError:
                continue
            if conv is None or conv.user_id != uid:
                continue
            found.extend(m for m in self.list_messages(conv.id) if m.role == "user")
        found.sort(key=lambda m: m.timestamp, reverse=True)
        return [m.content for m in found[:limit]]

    def get_default_api_key(self, service_name: str) -> Optional[str]:
        """从 <root>/default_api_keys.json 读取共享密钥，缺失或损坏时返回 None。"""
        path = self._root / "default_api_keys.json"
        if not path.exists():
            return None
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            logger.error("Error fetching default API key", extra={"extra": {"service_name": service_name, "error": str(e)}})
            return None
        if not isinstance(data, dict):
            return None
        return data.get(service_name) or None

    def _require_user(self) -> str:
        if not self._user_id:
            raise AuthRequired()
        return self._user_id

    def _now(self) -> datetime:
        # 保证同一实例内时间戳严格递增，排序才稳定
        now = datetime.now(timezone.utc)
        if self._last_ts is not None and now <= self._last_ts:
            now = self._last_ts + timedelta(microseconds=1)
        self._last_ts = now
        return now

    def _read_meta(self, cdir: Path) -> Optional[Conversation]:
        meta_path = cdir / "meta.json"
        if not meta_path.exists():
            return None
        try:
            data = json.loads(meta_path.read_text(encoding="utf-8"))
            return self._to_conversation(data)
        except (OSError, ValueError, KeyError) as e:
            raise PersistenceError(code="STORE_READ_ERROR", message=str(e))

    def _write_meta(self, cdir: Path, conv: Conversation) -> None:
        meta_path = cdir / "meta.json"
        tmp_path = cdir / f"meta.{uuid4().hex}.json.tmp"
        obj = {
            "id": conv.id,
            "title": conv.title,
            "user_id": conv.user_id,
            "created_at": format_timestamp(conv.created_at),
            "updated_at": format_timestamp(conv.updated_at),
        }
        try:
            tmp_path.write_text(json.dumps(obj, ensure_ascii=False), encoding="utf-8")
            os.replace(tmp_path, meta_path)
        except OSError as e:
            raise PersistenceError(code="STORE_WRITE_ERROR", message=str(e))

    @staticmethod
    def _to_conversation(data: Dict[str, Any]) -> Conversation:
        return Conversation(
            id=data["id"],
            title=data.get("title") or "",
            created_at=parse_timestamp(data["created_at"]),
            updated_at=parse_timestamp(data["updated_at"]),
            user_id=data.get("user_id"),
        )
