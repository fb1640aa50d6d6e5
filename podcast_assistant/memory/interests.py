"""从历史提问中提取用户兴趣与长期记忆摘要。

只做简单的子串匹配：把用户近期提问拼在一起，检查固定的播客类别是否出现。
任何存储错误都只记录日志并返回空结果，不影响对话本身。
"""

from typing import Iterable, List

from podcast_assistant.domain.conversation import ConversationStore
from podcast_assistant.domain.exceptions import BusinessError
from podcast_assistant.infrastructure.logging.logger import logger


PODCAST_CATEGORIES: List[str] = [
    "true crime", "comedy", "business", "news", "politics",
    "health", "science", "technology", "education", "sports",
    "music", "arts", "fiction", "history", "interview",
]


def extract_key_topics(texts: Iterable[str]) -> List[str]:
    all_text = " ".join(texts).lower()
    return [category for category in PODCAST_CATEGORIES if category in all_text]


def get_user_interests(store: ConversationStore, limit: int = 100) -> List[str]:
    try:
        queries = store.recent_user_messages(limit)
    except BusinessError as e:
        logger.warning("Error fetching user interests", extra={"extra": {"code": e.code, "error": e.message}})
        return []
    return extract_key_topics(queries)


def build_long_term_memory(store: ConversationStore, limit: int = 50) -> str:
    """生成注入请求上下文的长期记忆摘要，无历史时返回空串。"""
    try:
        queries = store.recent_user_messages(limit)
    except BusinessError as e:
        logger.warning("Error fetching long-term memory", extra={"extra": {"code": e.code, "error": e.message}})
        return ""
    if not queries:
        return ""
    topics = extract_key_topics(queries)
    return (
        "Based on past conversations, the user has shown interest in these podcast topics: "
        f"{', '.join(topics)}. They have asked about {len(queries)} different "
        "podcast-related questions in the past."
    )
