"""会话编排核心模块。

一次调用依次完成：确定会话 → 读取上下文窗口 → 持久化用户消息 →
调用回退网关 → 持久化 AI 回复 → 返回结果。各步骤之间没有回滚：
网关失败时用户消息保留，但不会写入 AI 消息。
"""

from dataclasses import dataclass
from typing import Optional, Dict, Any
from uuid import uuid4
from datetime import datetime, timezone
import time
import logging

from support_chat.agents.context_builder import ContextBuilder
from support_chat.config.settings import settings
from support_chat.domain.conversation import TranscriptStore
from support_chat.domain.exceptions import BusinessError
from support_chat.infrastructure.logging.logger import logger
from support_chat.infrastructure.storage.factory import create_store
from support_chat.providers import create_gateway
from support_chat.providers.gateway import CompletionGateway


@dataclass
class ChatTurnResult:
    reply: str
    session_id: str
    user_message_id: str
    assistant_message_id: str
    created_conversation: bool = False


def new_conversation_id() -> str:
    return f"c-{uuid4().hex}"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ConversationOrchestrator:
    def __init__(
        self,
        store: TranscriptStore,
        context_builder: ContextBuilder,
        gateway: CompletionGateway,
    ):
        self._store = store
        self._context_builder = context_builder
        self._gateway = gateway

    @property
    def store(self) -> TranscriptStore:
        return self._store

    def handle_message(self, message: str, session_id: Optional[str] = None) -> ChatTurnResult:
        """执行一次对话轮次。

        Args:
            message: 已通过校验的用户消息
            session_id: 会话ID（可选，不提供则创建新会话）

        Returns:
            ChatTurnResult，其中 session_id 即持久化使用的会话 ID

        Raises:
            UnknownConversationError: session_id 指向不存在的会话
            AllProvidersFailedError: 所有模型都失败（用户消息已保存）
            StoreError: 持久化失败
        """
        start_time = time.time()
        log_ctx: Dict[str, Any] = {"trace_id": f"tr-{uuid4().hex}"}

        # 1. 获取或创建会话
        created = False
        if session_id:
            conv = self._store.get_conversation(session_id)
            conversation_id = conv.id
        else:
            conversation_id = new_conversation_id()
            self._store.create_conversation(conversation_id, _utcnow())
            created = True
        log_ctx["conversation_id"] = conversation_id
        if created:
            self._log(logging.INFO, "Created new conversation", log_ctx)

        # 2. 先读上下文窗口，新消息只作为末尾一轮出现一次
        history = self._context_builder.build(conversation_id)

        # 3. 保存用户消息，失败则整个请求失败
        user_message_id = self._store.append_message(conversation_id, "user", message, _utcnow())
        self._log(
            logging.INFO,
            "Stored user message",
            log_ctx,
            message_id=user_message_id,
            history_size=len(history),
        )

        # 4. 调用网关；全部失败时直接上抛，不写 AI 消息
        try:
            reply = self._gateway.generate_reply(history, message)
        except BusinessError as e:
            self._log(logging.ERROR, "Reply generation failed", log_ctx, code=e.code)
            raise

        # 5. 保存 AI 回复
        assistant_message_id = self._store.append_message(conversation_id, "ai", reply, _utcnow())

        elapsed = time.time() - start_time
        self._log(
            logging.INFO,
            "Completed chat turn",
            log_ctx,
            elapsed_seconds=round(elapsed, 2),
            user_message_id=user_message_id,
            assistant_message_id=assistant_message_id,
        )
        return ChatTurnResult(
            reply=reply,
            session_id=conversation_id,
            user_message_id=user_message_id,
            assistant_message_id=assistant_message_id,
            created_conversation=created,
        )

    @staticmethod
    def _log(level: int, message: str, log_ctx: Dict[str, Any], **fields: Any) -> None:
        payload = dict(log_ctx)
        payload.update(fields)
        logger.log(level, message, extra={"extra": payload})


def build_orchestrator(
    cfg=None,
    store: Optional[TranscriptStore] = None,
    gateway: Optional[CompletionGateway] = None,
) -> ConversationOrchestrator:
    """按配置组装编排器，store / gateway 可单独替换（测试常用）。"""

    cfg = cfg or settings
    store = store or create_store(cfg)
    if gateway is None:
        if not getattr(cfg, "openrouter_api_key", None):
            logger.warning("OPENROUTER_API_KEY is not set; every provider attempt will fail")
        gateway = create_gateway(cfg)
    window = getattr(cfg, "max_context_messages", 10)
    return ConversationOrchestrator(
        store=store,
        context_builder=ContextBuilder(store, window_size=window),
        gateway=gateway,
    )
