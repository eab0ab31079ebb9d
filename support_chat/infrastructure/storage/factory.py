"""按配置选择会话存储后端。"""

from support_chat.domain.conversation import TranscriptStore
from support_chat.infrastructure.storage.json_store import JsonTranscriptStore
from support_chat.infrastructure.storage.sqlite_store import SqliteTranscriptStore


def create_store(cfg) -> TranscriptStore:
    """根据 cfg.storage_backend 创建存储实例，默认使用 JSON Lines。"""

    backend = (getattr(cfg, "storage_backend", "json") or "json").lower()
    if backend == "sqlite":
        return SqliteTranscriptStore(db_path=cfg.sqlite_path)
    return JsonTranscriptStore(root=cfg.storage_root)
