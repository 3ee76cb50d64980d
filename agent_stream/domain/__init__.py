"""领域层模型与协议。

包含：
- models: 统一的 ChatMessage / ChatRequest / ChatStreamChunk 模型。
- events: 线上传输的 StreamEvent 封闭变体。
- conversation: 会话与消息的存储模型及 ConversationStore 抽象。
- exceptions: 业务异常类型定义。
"""
