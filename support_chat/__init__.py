"""Support Chat 顶层包。

该包提供电商客服对话服务的核心实现，
包括配置加载、领域模型、会话记录存储、上下文窗口、
多模型回退网关与会话编排等能力。
"""

from support_chat.api.service import get_conversation_history, handle_message

__all__ = ["handle_message", "get_conversation_history"]
