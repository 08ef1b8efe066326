"""Nova Core 顶层包。

该包提供桌面聊天客户端的会话核心实现，
包括配置加载、项目/会话层级存储、快照持久化与迁移、
Completion 服务适配以及带回滚的消息发送流程。
"""

from nova_core.api.service import ChatApp

__all__ = ["ChatApp"]
