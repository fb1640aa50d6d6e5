"""系统提示词加载与完整提示词拼装。

系统提示词按语言(locale) 从 prompts/<locale> 目录读取；
build_full_prompt 把系统提示词、长期记忆摘要、最近若干轮对话与新问题
拼成发给 Gemini 的单段文本。
"""

from functools import lru_cache
from pathlib import Path
from typing import Iterable, List

from podcast_assistant.domain.models import Message


PROMPTS_DIR = Path(__file__).resolve().parent

PODCAST_THEMES: List[str] = [
    "True Crime",
    "Comedy",
    "News & Politics",
    "Business & Entrepreneurship",
    "Science & Technology",
    "Health & Wellness",
    "Arts & Entertainment",
    "Sports",
    "Education",
    "History",
    "Fiction & Storytelling",
]


@lru_cache(maxsize=None)
def load_system_prompt(locale: str = "en") -> str:
    """加载播客助手的系统提示词文本。"""

    fname = PROMPTS_DIR / locale / "podcast_system.md"
    return fname.read_text(encoding="utf-8").strip()


def build_system_message(long_term_memory: str = "", locale: str = "en") -> str:
    system = load_system_prompt(locale)
    if long_term_memory:
        return f"{system}\n\nLONG-TERM MEMORY CONTEXT: {long_term_memory}"
    return system


def format_history(messages: Iterable[Message]) -> str:
    """按时间顺序（最新在最后）把消息格式化为 "User: ..." / "Assistant: ..." 段落。"""

    blocks = []
    for msg in messages:
        label = "User" if msg.role == "user" else "Assistant"
        blocks.append(f"{label}: {msg.content}")
    return "\n\n".join(blocks)


def build_full_prompt(prompt: str, recent_messages: Iterable[Message], long_term_memory: str = "") -> str:
    system = build_system_message(long_term_memory)
    context = format_history(recent_messages)
    if context:
        return f"{system}\n\nConversation history:\n{context}\n\nUser's new message: {prompt}"
    return f"{system}\n\nUser: {prompt}"


def theme_research_prompt(theme: str) -> str:
    return (
        f"I want to research about {theme} podcasts. Please provide key information, "
        "trends, popular formats, and audience demographics."
    )


def interest_prompt(interest: str) -> str:
    return f"Tell me more about {interest} podcasts"
