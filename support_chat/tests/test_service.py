import tempfile
from pathlib import Path

import pytest

from support_chat.api import service
from support_chat.agents.context_builder import ContextBuilder
from support_chat.agents.support_agent import ConversationOrchestrator
from support_chat.infrastructure.storage.json_store import JsonTranscriptStore
from support_chat.providers.gateway import CompletionGateway, GatewayConfig
from support_chat.providers.registry import ModelRoute
from support_chat.domain.exceptions import AllProvidersFailedError, ApiError, ValidationError
from support_chat.domain.models import ChatResult, ChatChoice, ChatMessage


class FakeProvider:
    name = "fake"

    def __init__(self, fail=False):
        self.fail = fail

    def chat(self, req):
        if self.fail:
            raise ApiError(code="API_ERROR", message="down", http_status=503)
        msg = ChatMessage(role="assistant", content="<s>We are open 9am–6pm IST.[/s]")
        return ChatResult(provider="fake", model=req.model, choices=[ChatChoice(index=0, message=msg)])


@pytest.fixture
def orchestrator():
    with tempfile.TemporaryDirectory() as d:
        store = JsonTranscriptStore(root=Path(d) / ".storage")
        gateway = CompletionGateway(
            GatewayConfig(routes=[ModelRoute(provider="fake", model="m1")], system_prompt="sys"),
            {"fake": FakeProvider()},
        )
        orch = ConversationOrchestrator(store=store, context_builder=ContextBuilder(store), gateway=gateway)
        service.set_default_orchestrator(orch)
        yield orch
        service.set_default_orchestrator(None)


def test_validate_message():
    assert service.validate_message("hi") == "hi"
    for bad in ["", "   ", None, 42]:
        with pytest.raises(ValidationError) as ei:
            service.validate_message(bad)
        assert ei.value.code == "EMPTY_MESSAGE"
    with pytest.raises(ValidationError) as ei:
        service.validate_message("x" * 1001)
    assert ei.value.code == "MESSAGE_TOO_LONG"
    assert ei.value.http_status == 400


def test_handle_message_and_history(orchestrator):
    first = service.handle_message("Hello")
    assert first["reply"] == "We are open 9am–6pm IST."
    assert first["sessionId"]

    second = service.handle_message("What are your hours?", first["sessionId"])
    assert second["sessionId"] == first["sessionId"]

    history = service.get_conversation_history(first["sessionId"])
    assert [h["sender"] for h in history] == ["user", "ai", "user", "ai"]
    assert history[2]["text"] == "What are your hours?"
    stamps = [h["timestamp"] for h in history]
    assert all(isinstance(t, int) for t in stamps)
    assert stamps == sorted(stamps)

    assert [c["id"] for c in service.list_conversations()] == [first["sessionId"]]


def test_history_of_unknown_session_is_empty(orchestrator):
    assert service.get_conversation_history("c-unknown") == []


def test_validation_runs_before_orchestration(orchestrator):
    with pytest.raises(ValidationError):
        service.handle_message("   ")
    assert orchestrator.store.list_conversations() == []


def test_provider_exhaustion_surfaces_as_server_error():
    with tempfile.TemporaryDirectory() as d:
        store = JsonTranscriptStore(root=Path(d) / ".storage")
        gateway = CompletionGateway(
            GatewayConfig(routes=[ModelRoute(provider="fake", model="m1")], system_prompt="sys"),
            {"fake": FakeProvider(fail=True)},
        )
        service.set_default_orchestrator(
            ConversationOrchestrator(store=store, context_builder=ContextBuilder(store), gateway=gateway)
        )
        try:
            with pytest.raises(AllProvidersFailedError) as ei:
                service.handle_message("Hello")
            assert ei.value.http_status >= 500
            conv = store.list_conversations()[0]
            assert [m.sender for m in store.list_all_messages(conv.id)] == ["user"]
        finally:
            service.set_default_orchestrator(None)
