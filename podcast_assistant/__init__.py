"""Podcast Assistant 顶层包。

该包提供播客研究助手的核心实现，包括配置加载、领域模型、
Gemini 流式响应引擎、会话存储（Supabase / 本地 JSON）、
API 密钥管理以及驱动一轮对话的会话控制器。
"""

from podcast_assistant.api.service import AppContext, build_context

__all__ = ["AppContext", "build_context"]
