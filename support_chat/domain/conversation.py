from dataclasses import dataclass
from typing import List, Literal, Protocol
from datetime import datetime


# 持久化层的发送方，只有两种取值
Sender = Literal["user", "ai"]


@dataclass(frozen=True)
class Conversation:
    id: str
    created_at: datetime


@dataclass(frozen=True)
class MessageRecord:
    id: str
    conversation_id: str
    sender: Sender
    text: str
    created_at: datetime


class TranscriptStore(Protocol):
    """只追加的会话记录存储。

    所有写操作在返回前必须已经落盘；同一会话内的读取顺序即写入顺序。
    """

    def create_conversation(self, conversation_id: str, created_at: datetime) -> None:
        ...

    def get_conversation(self, conversation_id: str) -> Conversation:
        ...

    def list_conversations(self) -> List[Conversation]:
        ...

    def append_message(self, conversation_id: str, sender: Sender, text: str, created_at: datetime) -> str:
        ...

    def list_recent_messages(self, conversation_id: str, limit: int) -> List[MessageRecord]:
        ...

    def list_all_messages(self, conversation_id: str) -> List[MessageRecord]:
        ...
