import json
import os
import re
import threading
from collections import deque
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, Any, List
from uuid import uuid4

from support_chat.config.settings import settings
from support_chat.domain.conversation import TranscriptStore, Conversation, MessageRecord, Sender
from support_chat.domain.exceptions import (
    DuplicateConversationError,
    StoreError,
    UnknownConversationError,
    ValidationError,
)

# 会话 ID 会被拼进文件路径，只接受安全字符
_SAFE_ID = re.compile(r"^[A-Za-z0-9_-]{1,128}$")


def _to_iso(value: datetime) -> str:
    return value.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


def _from_iso(value: str) -> datetime:
    return datetime.fromisoformat(str(value).replace("Z", "+00:00"))


class JsonTranscriptStore(TranscriptStore):
    """基于目录 + JSON Lines 的会话存储。

    每个会话一个目录：meta.json 原子写入，messages.jsonl 只追加，
    每次追加都 flush + fsync 后才返回。
    """

    def __init__(self, root: str | Path | None = None):
        self._root = Path(root or settings.storage_root).resolve()
        self._conv_root = self._root / "conversations"
        self._conv_root.mkdir(parents=True, exist_ok=True)
        self._lock = threading.RLock()
        self._last_ts: Dict[str, datetime] = {}

    def create_conversation(self, conversation_id: str, created_at: datetime) -> None:
        cdir = self._conv_dir(conversation_id)
        with self._lock:
            if (cdir / "meta.json").exists():
                raise DuplicateConversationError(code="DUPLICATE_CONVERSATION", message=conversation_id)
            try:
                cdir.mkdir(parents=True, exist_ok=True)
            except OSError as e:
                raise StoreError(code="STORE_WRITE_ERROR", message=str(e))
            self._write_meta(cdir, Conversation(id=conversation_id, created_at=created_at))

    def get_conversation(self, conversation_id: str) -> Conversation:
        if not _SAFE_ID.match(conversation_id or ""):
            raise UnknownConversationError(code="UNKNOWN_CONVERSATION", message=str(conversation_id))
        meta_path = self._conv_root / conversation_id / "meta.json"
        if not meta_path.exists():
            raise UnknownConversationError(code="UNKNOWN_CONVERSATION", message=conversation_id)
        try:
            data = json.loads(meta_path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            raise StoreError(code="STORE_READ_ERROR", message=str(e))
        return Conversation(id=data["id"], created_at=_from_iso(data["created_at"]))

    def list_conversations(self) -> List[Conversation]:
        items: List[Conversation] = []
        for cdir in self._conv_root.iterdir():
            meta_path = cdir / "meta.json"
            if not cdir.is_dir() or not meta_path.exists():
                continue
            try:
                data = json.loads(meta_path.read_text(encoding="utf-8"))
            except (OSError, ValueError) as e:
                raise StoreError(code="STORE_READ_ERROR", message=str(e))
            items.append(Conversation(id=data["id"], created_at=_from_iso(data["created_at"])))
        items.sort(key=lambda c: c.created_at)
        return items

    def append_message(self, conversation_id: str, sender: Sender, text: str, created_at: datetime) -> str:
        with self._lock:
            self.get_conversation(conversation_id)
            msgs_path = self._conv_root / conversation_id / "messages.jsonl"
            last = self._last_timestamp(conversation_id, msgs_path)
            if last is not None and created_at < last:
                created_at = last
            record = MessageRecord(
                id=f"m-{uuid4().hex}",
                conversation_id=conversation_id,
                sender=sender,
                text=text,
                created_at=created_at,
            )
            payload = {
                "id": record.id,
                "conversation_id": record.conversation_id,
                "sender": record.sender,
                "text": record.text,
                "created_at": _to_iso(record.created_at),
            }
            line = json.dumps(payload, ensure_ascii=False) + "\n"
            try:
                if self._has_torn_tail(msgs_path):
                    # 上次崩溃留下的半行，另起一行避免新记录被粘到半行上
                    line = "\n" + line
                with msgs_path.open("a", encoding="utf-8") as f:
                    f.write(line)
                    f.flush()
                    os.fsync(f.fileno())
            except OSError as e:
                raise StoreError(code="STORE_WRITE_ERROR", message=str(e))
            self._last_ts[conversation_id] = created_at
            return record.id

    def list_recent_messages(self, conversation_id: str, limit: int) -> List[MessageRecord]:
        if limit <= 0:
            return []
        return list(deque(self._read_messages(conversation_id), maxlen=limit))

    def list_all_messages(self, conversation_id: str) -> List[MessageRecord]:
        return list(self._read_messages(conversation_id))

    # ---- 辅助方法 ----

    def _conv_dir(self, conversation_id: str) -> Path:
        if not _SAFE_ID.match(conversation_id or ""):
            raise ValidationError(code="INVALID_CONVERSATION_ID", message=str(conversation_id))
        return self._conv_root / conversation_id

    def _read_messages(self, conversation_id: str):
        if not _SAFE_ID.match(conversation_id or ""):
            return
        msgs_path = self._conv_root / conversation_id / "messages.jsonl"
        with self._lock:
            if not msgs_path.exists():
                return
            try:
                lines = msgs_path.read_text(encoding="utf-8").splitlines()
            except OSError as e:
                raise StoreError(code="STORE_READ_ERROR", message=str(e))
        for line in lines:
            if not line.strip():
                continue
            try:
                data = json.loads(line)
            except json.JSONDecodeError:
                # 崩溃时可能留下半行，跳过
                continue
            yield self._to_message(data)

    @staticmethod
    def _has_torn_tail(msgs_path: Path) -> bool:
        if not msgs_path.exists():
            return False
        with msgs_path.open("rb") as f:
            f.seek(0, os.SEEK_END)
            if f.tell() == 0:
                return False
            f.seek(-1, os.SEEK_END)
            return f.read(1) != b"\n"

    def _last_timestamp(self, conversation_id: str, msgs_path: Path) -> datetime | None:
        if conversation_id in self._last_ts:
            return self._last_ts[conversation_id]
        last = None
        if msgs_path.exists():
            for msg in self._read_messages(conversation_id):
                last = msg.created_at
        if last is not None:
            self._last_ts[conversation_id] = last
        return last

    def _write_meta(self, cdir: Path, conv: Conversation) -> None:
        meta_path = cdir / "meta.json"
        tmp_path = cdir / f"meta.{uuid4().hex}.json.tmp"
        obj = {
            "id": conv.id,
            "created_at": _to_iso(conv.created_at),
        }
        try:
            with tmp_path.open("w", encoding="utf-8") as f:
                f.write(json.dumps(obj, ensure_ascii=False))
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_path, meta_path)
        except OSError as e:
            raise StoreError(code="STORE_WRITE_ERROR", message=str(e))

    @staticmethod
    def _to_message(data: Dict[str, Any]) -> MessageRecord:
        return MessageRecord(
            id=data["id"],
            conversation_id=data["conversation_id"],
            sender="user" if data.get("sender") == "user" else "ai",
            text=data.get("text") or "",
            created_at=_from_iso(data["created_at"]),
        )
