"""统一的消息与生成请求数据模型。

本模块定义了会话控制器、流式引擎与存储层之间共享的标准数据结构：

- Message: 一条对话消息（user/assistant）。
- GenerationConfig / SafetySetting: 每次请求都会携带的生成参数与安全阈值。
- GenerationRequest: 发给流式引擎的一次完整请求。

Provider 适配器负责在 Gemini 的 JSON 与这些模型之间做转换。
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Literal, Optional
from uuid import uuid4


# 消息角色（与 UI 展示和 messages 表的 role 字段对应）
Role = Literal["user", "assistant"]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_message_id() -> str:
    return str(uuid4())


@dataclass
class Message:
    """一条对话消息。

    - id: 消息标识；助手消息在整个流式过程中保持同一个 id。
    - role: user 或 assistant。
    - content: 纯文本内容，助手消息会随着片段到达被原地追加。
    - timestamp: 创建时间（UTC）。
    """

    id: str
    role: Role
    content: str
    timestamp: datetime = field(default_factory=utcnow)

    @classmethod
    def user(cls, content: str) -> "Message":
        return cls(id=new_message_id(), role="user", content=content)

    @classmethod
    def assistant(cls, content: str = "") -> "Message":
        return cls(id=new_message_id(), role="assistant", content=content)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "role": self.role,
            "content": self.content,
            "timestamp": format_timestamp(self.timestamp),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Message":
        role = data.get("role")
        if role not in ("user", "assistant"):
            raise ValueError(f"Unknown message role: {role!r}")
        return cls(
            id=str(data["id"]),
            role=role,
            content=data.get("content") or "",
            timestamp=parse_timestamp(data["timestamp"]),
        )


@dataclass
class GenerationConfig:
    """生成参数：temperature 控制随机性，top_p/top_k 控制采样范围，max_output_tokens 限制长度。"""

    temperature: float = 0.7
    top_p: float = 0.8
    top_k: int = 40
    max_output_tokens: int = 2048

    def to_payload(self) -> Dict[str, Any]:
        return {
            "temperature": self.temperature,
            "topP": self.top_p,
            "topK": self.top_k,
            "maxOutputTokens": self.max_output_tokens,
        }


@dataclass
class SafetySetting:
    """单个危害类别的过滤阈值。"""

    category: str
    threshold: str = "BLOCK_MEDIUM_AND_ABOVE"

    def to_payload(self) -> Dict[str, str]:
        return {"category": self.category, "threshold": self.threshold}


@dataclass
class GenerationRequest:
    """一次流式生成请求。

    引擎根据 past_messages 的最后 N 条与 long_term_memory 拼出完整提示词。
    """

    prompt: str
    past_messages: List[Message] = field(default_factory=list)
    long_term_memory: str = ""
    generation: Optional[GenerationConfig] = None
    safety_settings: Optional[List[SafetySetting]] = None


def format_timestamp(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


def parse_timestamp(value: Any) -> datetime:
    if isinstance(value, datetime):
        parsed = value
    else:
        parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed
