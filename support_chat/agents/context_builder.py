"""上下文窗口构建。

只保留最近 window_size 条消息（两种发送方都计入），按时间正序返回，
更早的内容直接丢弃，不做摘要。
"""

from typing import List

from support_chat.domain.conversation import TranscriptStore, MessageRecord
from support_chat.domain.models import ChatMessage

DEFAULT_WINDOW_SIZE = 10


def to_chat_message(record: MessageRecord) -> ChatMessage:
    # 非 user 发送方一律映射为 assistant
    role = "user" if record.sender == "user" else "assistant"
    return ChatMessage(role=role, content=record.text)


class ContextBuilder:
    def __init__(self, store: TranscriptStore, window_size: int = DEFAULT_WINDOW_SIZE):
        if window_size < 1:
            raise ValueError("window_size must be >= 1")
        self._store = store
        self._window_size = window_size

    @property
    def window_size(self) -> int:
        return self._window_size

    def build(self, conversation_id: str) -> List[ChatMessage]:
        records = self._store.list_recent_messages(conversation_id, self._window_size)
        return [to_chat_message(r) for r in records]
