"""会话控制器。

持有当前会话的内存消息列表，并驱动一轮对话的状态机：

    IDLE → AWAITING_PERSIST_USER → STREAMING → AWAITING_PERSIST_ASSISTANT → IDLE

非 IDLE 状态下的新提交会被直接拒绝；一轮中的任何失败都会给出提示，
并无条件回到 IDLE。
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, List, Literal, Optional
from uuid import uuid4

from podcast_assistant.config.settings import settings
from podcast_assistant.domain.conversation import Conversation, ConversationStore, derive_title
from podcast_assistant.domain.exceptions import BusinessError, CredentialMissing
from podcast_assistant.domain.models import Message
from podcast_assistant.credentials.store import CredentialStore
from podcast_assistant.infrastructure.logging.logger import logger
from podcast_assistant.memory.interests import build_long_term_memory, get_user_interests
from podcast_assistant.prompts import interest_prompt, theme_research_prompt
from podcast_assistant.session.history import LocalHistory
from podcast_assistant.streaming.engine import StreamingResponseEngine


class TurnState(str, Enum):
    IDLE = "idle"
    AWAITING_PERSIST_USER = "awaiting_persist_user"
    STREAMING = "streaming"
    AWAITING_PERSIST_ASSISTANT = "awaiting_persist_assistant"


TurnStatus = Literal["completed", "busy", "rejected", "credential_required", "failed", "abandoned"]

GENERIC_FAILURE_NOTICE = "Failed to generate response. Please try again."
CREDENTIAL_NOTICE = "Please set your Gemini API key first"


@dataclass
class TurnResult:
    """submit 的结果。

    status:
        - "completed": 助手回复已保存。
        - "busy": 上一轮尚未结束，本次提交被拒绝。
        - "rejected": 输入为空。
        - "credential_required": 没有可用密钥，消息未保存也未发送。
        - "failed": 本轮失败，notice 为给用户的提示。
        - "abandoned": 会话在流式过程中被关闭。
    """

    status: TurnStatus
    conversation_id: Optional[str] = None
    user_message: Optional[Message] = None
    assistant_message: Optional[Message] = None
    notice: Optional[str] = None
    error: Optional[BusinessError] = None


class SessionController:
    def __init__(
        self,
        store: ConversationStore,
        engine: StreamingResponseEngine,
        credentials: CredentialStore,
        history: Optional[LocalHistory] = None,
        on_notice: Optional[Callable[[str], None]] = None,
        on_update: Optional[Callable[[List[Message]], None]] = None,
        on_credential_required: Optional[Callable[[], None]] = None,
        cfg=settings,
    ):
        self._store = store
        self._engine = engine
        self._credentials = credentials
        self._history = history
        self._on_notice = on_notice
        self._on_update = on_update
        self._on_credential_required = on_credential_required
        self._settings = cfg

        self._state = TurnState.IDLE
        self._messages: List[Message] = []
        self._conversation_id: Optional[str] = None
        self._active_response_id: Optional[str] = None
        self._epoch = 0
        self.draft = ""
        self.interests: List[str] = []

    @property
    def state(self) -> TurnState:
        return self._state

    @property
    def is_busy(self) -> bool:
        return self._state is not TurnState.IDLE

    @property
    def messages(self) -> List[Message]:
        return list(self._messages)

    @property
    def conversation_id(self) -> Optional[str]:
        return self._conversation_id

    # ---- 一轮对话 ----

    def submit(self, content: str) -> TurnResult:
        if self.is_busy:
            return TurnResult(status="busy", conversation_id=self._conversation_id)
        if not content or not content.strip():
            return TurnResult(status="rejected", conversation_id=self._conversation_id)

        if not self._credentials.has_api_key():
            self.draft = content
            self._request_credential()
            return TurnResult(status="credential_required", conversation_id=self._conversation_id, notice=CREDENTIAL_NOTICE)

        log_ctx: Dict[str, Any] = {"trace_id": f"tr-{uuid4().hex}"}
        self.draft = content
        self._state = TurnState.AWAITING_PERSIST_USER
        try:
            return self._run_turn(content, log_ctx)
        except BusinessError as e:
            self._log(logging.ERROR, "Turn failed", log_ctx, code=e.code, error=e.message, state=self._state.value)
            if isinstance(e, CredentialMissing):
                self._request_credential()
            return self._fail(e.message or GENERIC_FAILURE_NOTICE, e)
        except Exception as e:
            logger.exception("Unexpected error generating response", extra={"extra": dict(log_ctx)})
            return self._fail(GENERIC_FAILURE_NOTICE, BusinessError(code="INTERNAL_ERROR", message=str(e), http_status=500))
        finally:
            self._active_response_id = None
            self._state = TurnState.IDLE

    def submit_theme(self, theme: str) -> TurnResult:
        return self.submit(theme_research_prompt(theme))

    def submit_interest(self, interest: str) -> TurnResult:
        return self.submit(interest_prompt(interest))

    def _run_turn(self, content: str, log_ctx: Dict[str, Any]) -> TurnResult:
        epoch = self._epoch

        # 1. 获取或创建会话，保存用户消息
        is_first = not self._messages
        if self._conversation_id is None:
            conv = self._store.create_conversation()
            self._conversation_id = conv.id
            is_first = True
            self._log(logging.INFO, "Created new conversation", log_ctx, conversation_id=conv.id)
        conversation_id = self._conversation_id
        log_ctx["conversation_id"] = conversation_id

        user_msg = Message.user(content)
        self._store.add_message(conversation_id, user_msg)
        if is_first:
            self._store.update_conversation_title(
                conversation_id, derive_title(content, self._settings.title_max_length)
            )
        self._log(logging.INFO, "Stored user message", log_ctx, message_id=user_msg.id)
        if epoch != self._epoch:
            return self._abandoned(conversation_id, log_ctx)

        past = [m for m in self._messages if m.content]
        self._messages.append(user_msg)
        self._remember(user_msg)
        self.draft = ""
        self._notify_update()

        # 2. 流式生成，片段原地追加到同一条助手消息
        self._state = TurnState.STREAMING
        assistant = Message.assistant()
        self._active_response_id = assistant.id
        self._messages.append(assistant)
        self._notify_update()

        memory = build_long_term_memory(self._store, self._settings.long_term_memory_limit)
        stream = self._engine.stream_fragments(
            content,
            past,
            self._credentials.get_api_key(),
            long_term_memory=memory,
        )
        abandoned = False
        try:
            for fragment in stream:
                if not self._apply_fragment(assistant.id, fragment):
                    abandoned = True
                    break
        finally:
            stream.close()
        if abandoned or epoch != self._epoch:
            return self._abandoned(conversation_id, log_ctx)

        # 3. 保存最终的助手消息
        self._state = TurnState.AWAITING_PERSIST_ASSISTANT
        self._store.add_message(conversation_id, assistant)
        self._remember(assistant)
        self._log(
            logging.INFO,
            "Stored assistant message",
            log_ctx,
            message_id=assistant.id,
            length=len(assistant.content),
        )
        self.refresh_interests()
        return TurnResult(
            status="completed",
            conversation_id=conversation_id,
            user_message=user_msg,
            assistant_message=assistant,
        )

    def _apply_fragment(self, response_id: str, fragment: str) -> bool:
        """流式回调：会话已被关闭或已开始新回复时不做任何修改。"""
        if self._active_response_id != response_id:
            return False
        for msg in self._messages:
            if msg.id == response_id:
                msg.content += fragment
                self._notify_update()
                return True
        return False

    def _fail(self, notice: str, error: BusinessError) -> TurnResult:
        if self._state is TurnState.STREAMING and self._active_response_id:
            # 流失败时不保留任何部分片段
            self._messages = [m for m in self._messages if m.id != self._active_response_id]
            self._notify_update()
        self._notify(notice)
        return TurnResult(status="failed", conversation_id=self._conversation_id, notice=notice, error=error)

    def _abandoned(self, conversation_id: Optional[str], log_ctx: Dict[str, Any]) -> TurnResult:
        self._log(logging.INFO, "Turn abandoned", log_ctx)
        return TurnResult(status="abandoned", conversation_id=conversation_id)

    # ---- 导航 ----

    def abandon(self) -> None:
        """关闭当前会话视图；进行中的流随即停止，回复不会被保存。"""
        self._epoch += 1
        self._active_response_id = None
        self._messages = []
        self._conversation_id = None

    def new_chat(self) -> bool:
        if self.is_busy:
            return False
        had_messages = bool(self._messages)
        self._conversation_id = None
        self._messages = []
        self._notify_update()
        if had_messages:
            self._notify("Started a new chat")
        return True

    def load_conversation(self, conversation_id: str) -> bool:
        if self.is_busy:
            return False
        try:
            messages = self._store.list_messages(conversation_id)
        except BusinessError as e:
            logger.error("Error fetching messages", extra={"extra": {"conversation_id": conversation_id, "error": e.message}})
            self._notify("Failed to load messages")
            return False
        self._conversation_id = conversation_id
        self._messages = messages
        self._notify_update()
        return True

    def list_conversations(self) -> List[Conversation]:
        try:
            return self._store.list_conversations()
        except BusinessError as e:
            logger.error("Error fetching conversations", extra={"extra": {"error": e.message}})
            self._notify("Failed to load conversations")
            return []

    def rename_conversation(self, conversation_id: str, title: str) -> bool:
        try:
            self._store.update_conversation_title(conversation_id, title)
        except BusinessError as e:
            logger.error("Error updating conversation", extra={"extra": {"conversation_id": conversation_id, "error": e.message}})
            self._notify("Failed to update conversation")
            return False
        return True

    def delete_conversation(self, conversation_id: str) -> bool:
        if self.is_busy and conversation_id == self._conversation_id:
            return False
        try:
            self._store.delete_conversation(conversation_id)
        except BusinessError as e:
            logger.error("Error deleting conversation", extra={"extra": {"conversation_id": conversation_id, "error": e.message}})
            self._notify("Failed to delete conversation")
            return False
        if conversation_id == self._conversation_id:
            self._conversation_id = None
            self._messages = []
            self._notify_update()
        return True

    def refresh_interests(self) -> List[str]:
        self.interests = get_user_interests(self._store, self._settings.interests_limit)
        return self.interests

    # ---- 辅助方法 ----

    def _remember(self, message: Message) -> None:
        if self._history is None:
            return
        try:
            self._history.add(message)
        except BusinessError as e:
            logger.warning("Failed to mirror message to local history", extra={"extra": {"error": e.message}})

    def _request_credential(self) -> None:
        if self._on_credential_required is not None:
            self._on_credential_required()

    def _notify(self, text: str) -> None:
        logger.info("Notice", extra={"extra": {"notice": text}})
        if self._on_notice is not None:
            self._on_notice(text)

    def _notify_update(self) -> None:
        if self._on_update is not None:
            self._on_update(self.messages)

    @staticmethod
    def _log(level: int, message: str, log_ctx: Dict[str, Any], **fields: Any) -> None:
        payload = dict(log_ctx)
        payload.update(fields)
        logger.log(level, message, extra={"extra": payload})
