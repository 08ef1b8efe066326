"""领域层模型与协议。

包含：
- models: Message / Chat / Project / StoreEvent 数据结构。
- conversation: ConversationStore（层级、不变量、快照与迁移）及 SnapshotStorage 协议。
- exceptions: 业务异常类型定义。
"""
