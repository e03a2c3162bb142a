"""领域层模型与协议。

包含：
- models: Pattern / ChatRequest / ProviderReply / StreamResponse 等统一模型。
- session: 会话条目（ChatEntry）及 ChatSession 抽象。
- exceptions: 业务异常类型定义。
"""
