"""对外 API 服务模块。

提供简化的函数接口供路由层调用，返回值均为可直接序列化为 JSON 的结构。
业务异常原样上抛，路由层可用 BusinessError.http_status / to_dict() 生成响应。
"""

from typing import Optional, Dict, Any

from support_chat.config.settings import settings
from support_chat.agents.support_agent import ConversationOrchestrator, build_orchestrator
from support_chat.domain.exceptions import BusinessError, ValidationError
from support_chat.infrastructure.logging.logger import logger


_orchestrator: Optional[ConversationOrchestrator] = None


def get_default_orchestrator() -> ConversationOrchestrator:
    """获取默认的编排器实例（单例）。"""
    global _orchestrator
    if _orchestrator is None:
        _orchestrator = build_orchestrator(settings)
    return _orchestrator


def set_default_orchestrator(orchestrator: Optional[ConversationOrchestrator]) -> None:
    """替换默认编排器，传 None 则下次调用时重新按配置构建。"""
    global _orchestrator
    _orchestrator = orchestrator


def validate_message(message: Any) -> str:
    """校验用户消息：必须是非空白字符串，且不超过 max_message_length。"""
    if not isinstance(message, str) or not message.strip():
        raise ValidationError(code="EMPTY_MESSAGE", message="Message cannot be empty")
    if len(message) > settings.max_message_length:
        raise ValidationError(
            code="MESSAGE_TOO_LONG",
            message="Message too long",
            max_length=settings.max_message_length,
        )
    return message


def handle_message(message: Any, session_id: Optional[str] = None) -> Dict[str, str]:
    """处理一条用户消息。

    Args:
        message: 用户输入内容
        session_id: 会话ID（可选，不提供则创建新会话）

    Returns:
        {"reply": ..., "sessionId": ...}

    Raises:
        各种 domain.exceptions 中定义的异常
    """
    text = validate_message(message)
    try:
        result = get_default_orchestrator().handle_message(text, session_id or None)
    except BusinessError as e:
        logger.error(f"Chat failed: {e.code}", extra={"extra": {
            "session_id": session_id,
            "code": e.code,
            "http_status": e.http_status,
        }})
        raise
    return {"reply": result.reply, "sessionId": result.session_id}


def get_conversation_history(session_id: str) -> list[Dict[str, Any]]:
    """获取会话的完整记录，按时间正序。

    Args:
        session_id: 会话ID

    Returns:
        [{"sender": "user"|"ai", "text": ..., "timestamp": 毫秒时间戳}]，
        会话不存在时返回空列表
    """
    msgs = get_default_orchestrator().store.list_all_messages(session_id)
    return [
        {
            "sender": "user" if m.sender == "user" else "ai",
            "text": m.text,
            "timestamp": int(m.created_at.timestamp() * 1000),
        }
        for m in msgs
    ]


def list_conversations() -> list[Dict[str, Any]]:
    """列出所有会话。"""
    convs = get_default_orchestrator().store.list_conversations()
    return [{"id": c.id, "createdAt": c.created_at.isoformat()} for c in convs]
