"""对外服务模块。

根据配置组装一个显式的 AppContext（存储、密钥、历史、引擎、控制器），
并提供简化的函数接口供 UI 层调用。不使用模块级单例，调用方自己持有上下文。
"""

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from supabase import create_client

from podcast_assistant.config.settings import settings
from podcast_assistant.credentials.store import CredentialStore
from podcast_assistant.domain.conversation import ConversationStore
from podcast_assistant.domain.exceptions import ValidationError
from podcast_assistant.domain.models import Message, format_timestamp
from podcast_assistant.infrastructure.logging.logger import logger
from podcast_assistant.infrastructure.storage.json_store import JsonConversationStore
from podcast_assistant.infrastructure.storage.local_state import LocalStateStore
from podcast_assistant.infrastructure.storage.supabase_store import SupabaseConversationStore
from podcast_assistant.providers import create_provider
from podcast_assistant.providers.base import ProviderClient
from podcast_assistant.session.controller import SessionController, TurnResult
from podcast_assistant.session.history import LocalHistory
from podcast_assistant.streaming.engine import StreamingResponseEngine


@dataclass
class AppContext:
    store: ConversationStore
    local_state: LocalStateStore
    credentials: CredentialStore
    history: LocalHistory
    engine: StreamingResponseEngine
    controller: SessionController


def create_store(cfg=settings) -> ConversationStore:
    """按配置选择会话存储后端。"""
    if cfg.use_supabase:
        if not (cfg.supabase_url and cfg.supabase_key):
            raise ValidationError(code="MISSING_SUPABASE_CONFIG", message="Supabase URL and key are required")
        client = create_client(cfg.supabase_url, cfg.supabase_key)
        logger.info("Using Supabase conversation store", extra={"extra": {"url": cfg.supabase_url}})
        return SupabaseConversationStore(client, title_max_length=cfg.title_max_length)
    logger.info("Using local JSON conversation store", extra={"extra": {"root": str(Path(cfg.storage_root).resolve())}})
    return JsonConversationStore(
        root=cfg.storage_root,
        user_id=cfg.local_user_id,
        title_max_length=cfg.title_max_length,
    )


def build_context(
    cfg=settings,
    store: Optional[ConversationStore] = None,
    provider_client: Optional[ProviderClient] = None,
    on_notice: Optional[Callable[[str], None]] = None,
    on_update: Optional[Callable[[List[Message]], None]] = None,
    on_credential_required: Optional[Callable[[], None]] = None,
) -> AppContext:
    store = store or create_store(cfg)
    local_state = LocalStateStore(cfg.local_state_path)
    default_source = store if hasattr(store, "get_default_api_key") else None
    credentials = CredentialStore(local_state, default_source, service_name=cfg.default_key_service)
    history = LocalHistory(local_state)
    engine = StreamingResponseEngine(provider_client or create_provider(cfg=cfg), cfg)
    controller = SessionController(
        store=store,
        engine=engine,
        credentials=credentials,
        history=history,
        on_notice=on_notice,
        on_update=on_update,
        on_credential_required=on_credential_required,
        cfg=cfg,
    )
    return AppContext(
        store=store,
        local_state=local_state,
        credentials=credentials,
        history=history,
        engine=engine,
        controller=controller,
    )


def run_podcast_chat(ctx: AppContext, user_input: str) -> Dict[str, Any]:
    """提交一条消息并返回可序列化的结果。

    Returns:
        包含 status、conversation_id、用户消息、助手消息与提示信息的字典
    """
    result: TurnResult = ctx.controller.submit(user_input)
    return {
        "status": result.status,
        "conversation_id": result.conversation_id,
        "user_message": _message_dict(result.user_message),
        "assistant_message": _message_dict(result.assistant_message),
        "notice": result.notice,
        "error_code": result.error.code if result.error else None,
    }


def list_conversations(ctx: AppContext) -> List[Dict[str, Any]]:
    """列出当前用户的会话，最近更新的在前。"""
    return [
        {
            "id": c.id,
            "title": c.title,
            "created_at": format_timestamp(c.created_at),
            "updated_at": format_timestamp(c.updated_at),
        }
        for c in ctx.controller.list_conversations()
    ]


def get_conversation_messages(ctx: AppContext, conversation_id: str) -> List[Dict[str, Any]]:
    if not ctx.controller.load_conversation(conversation_id):
        return []
    return [m.to_dict() for m in ctx.controller.messages]


def set_api_key(ctx: AppContext, key: str) -> None:
    ctx.credentials.set_api_key(key)


def has_api_key(ctx: AppContext) -> bool:
    return ctx.credentials.has_api_key()


def _message_dict(message: Optional[Message]) -> Optional[Dict[str, Any]]:
    return message.to_dict() if message is not None else None
