import tempfile
from pathlib import Path
from datetime import datetime, timezone

import pytest

from support_chat.agents.context_builder import ContextBuilder
from support_chat.infrastructure.storage.json_store import JsonTranscriptStore


def _fill(store, cid, count):
    store.create_conversation(cid, datetime.now(timezone.utc))
    for i in range(count):
        store.append_message(cid, "user" if i % 2 == 0 else "ai", f"t{i}", datetime.now(timezone.utc))


def test_context_builder_maps_roles():
    with tempfile.TemporaryDirectory() as d:
        store = JsonTranscriptStore(root=Path(d) / ".storage")
        _fill(store, "c-1", 3)
        ctx = ContextBuilder(store).build("c-1")
        assert [(m.role, m.content) for m in ctx] == [("user", "t0"), ("assistant", "t1"), ("user", "t2")]


def test_context_builder_caps_window_at_ten():
    with tempfile.TemporaryDirectory() as d:
        store = JsonTranscriptStore(root=Path(d) / ".storage")
        _fill(store, "c-1", 25)
        ctx = ContextBuilder(store).build("c-1")
        assert len(ctx) == 10
        assert [m.content for m in ctx] == [f"t{i}" for i in range(15, 25)]


def test_context_builder_unknown_conversation_is_empty():
    with tempfile.TemporaryDirectory() as d:
        store = JsonTranscriptStore(root=Path(d) / ".storage")
        assert ContextBuilder(store).build("c-none") == []


def test_context_builder_rejects_bad_window():
    with pytest.raises(ValueError):
        ContextBuilder(store=None, window_size=0)
