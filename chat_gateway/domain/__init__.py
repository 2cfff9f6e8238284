"""领域层模型与协议。

包含：
- models: 统一的 ChatMessage 模型与角色归一化。
- session: 会话历史存储的 SessionStore 抽象。
- exceptions: 业务异常类型定义。
"""
