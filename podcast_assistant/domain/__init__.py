"""领域层模型与协议。

包含：
- models: Message / GenerationConfig / GenerationRequest 等共享模型。
- conversation: 会话模型、标题规则以及 ConversationStore 抽象。
- exceptions: 业务异常类型定义。
"""
