from __future__ import annotations

from types import SimpleNamespace

import pytest
from langchain_core.messages import HumanMessage, SystemMessage

from codestream import llm_client
from codestream.events import ProgressReporter
from codestream.llm_client import ChatLlmClient, MaxRetryErrorsException, ProviderStreamError
from codestream.repair_coordinator import RepairCoordinator, RepairRequestError

MESSAGES = [SystemMessage(content="system"), HumanMessage(content="make a button")]


def _delta(text: str) -> SimpleNamespace:
    return SimpleNamespace(type="response.output_text.delta", delta=text)


class _FakeResponses:
    def __init__(self, create):
        self.create = create
        self.calls: list[dict] = []


class _FakeOpenAI:
    """Replaces the OpenAI client; `create` decides what each responses.create() call does."""

    create = None

    def __init__(self, **kwargs):
        self.kwargs = kwargs
        self.responses = _FakeResponses(self._create)

    def _create(self, **request):
        self.responses.calls.append(request)
        return type(self).create(**request)


def _openai_client(monkeypatch, create) -> ChatLlmClient:
    fake = type("FakeOpenAI", (_FakeOpenAI,), {"create": staticmethod(create)})
    monkeypatch.setattr(llm_client, "OpenAI", fake)
    return ChatLlmClient("gpt-4o", vertex_project="p", vertex_region="r", max_output_tokens=100)


def test_openai_stream_yields_text_deltas_and_usage(monkeypatch) -> None:
    def create(**request):
        assert request["stream"] is True
        yield _delta("<file ")
        yield SimpleNamespace(type="response.output_text.done", text="ignored")
        yield _delta('path="a.txt">')
        yield SimpleNamespace(
            type="response.completed",
            response=SimpleNamespace(usage=SimpleNamespace(input_tokens=3, output_tokens=5, total_tokens=8)),
        )

    client = _openai_client(monkeypatch, create)

    assert list(client.stream(MESSAGES)) == ["<file ", 'path="a.txt">']
    assert client.last_usage == {"prompt_token_count": 3, "candidates_token_count": 5, "total_token_count": 8}
    request = client._client.responses.calls[0]
    assert request["max_output_tokens"] == 100
    assert [m["role"] for m in request["input"]] == ["developer", "user"]


def test_stream_failure_midway_reports_chunks_received(monkeypatch) -> None:
    def create(**request):
        yield _delta("one")
        yield _delta("two")
        raise ConnectionError("upstream connection reset")

    client = _openai_client(monkeypatch, create)
    received = []

    with pytest.raises(ProviderStreamError) as excinfo:
        for text in client.stream(MESSAGES):
            received.append(text)

    assert received == ["one", "two"]
    assert excinfo.value.chunks_received == 2
    assert "ConnectionError" in str(excinfo.value)


def test_failed_response_event_raises(monkeypatch) -> None:
    def create(**request):
        yield _delta("partial")
        yield SimpleNamespace(type="response.failed", response="model overloaded")
        yield _delta("never seen")

    client = _openai_client(monkeypatch, create)
    received = []

    with pytest.raises(ProviderStreamError) as excinfo:
        for text in client.stream(MESSAGES):
            received.append(text)

    assert received == ["partial"]
    assert excinfo.value.chunks_received == 1
    assert "model overloaded" in str(excinfo.value)


def test_stream_that_cannot_open_reports_no_chunks(monkeypatch) -> None:
    def create(**request):
        raise ConnectionError("connection refused")

    client = _openai_client(monkeypatch, create)

    with pytest.raises(ProviderStreamError) as excinfo:
        list(client.stream(MESSAGES))

    assert excinfo.value.chunks_received == 0


def test_vertex_stream_joins_content_parts(monkeypatch) -> None:
    class FakeVertex:
        def __init__(self, **kwargs):
            self.kwargs = kwargs

        def stream(self, messages, **kwargs):
            yield SimpleNamespace(content="<file ", usage_metadata=None)
            yield SimpleNamespace(content=[{"type": "text", "text": 'path="a.txt">'}], usage_metadata=None)
            yield SimpleNamespace(content="", usage_metadata={"prompt_token_count": 4, "total_token_count": 9})
            raise TimeoutError("deadline exceeded")

    monkeypatch.setattr(llm_client, "ChatVertexAI", FakeVertex)
    client = ChatLlmClient("gemini-2.5-flash", vertex_project="p", vertex_region="r")
    received = []

    with pytest.raises(ProviderStreamError) as excinfo:
        for text in client.stream(MESSAGES, max_output_tokens=50):
            received.append(text)

    assert received == ["<file ", 'path="a.txt">']
    assert excinfo.value.chunks_received == 2
    assert client.last_usage["prompt_token_count"] == 4
    assert client._vertex.kwargs["model_name"] == "gemini-2.5-flash"


def test_invoke_returns_output_text(monkeypatch) -> None:
    def create(**request):
        assert "stream" not in request
        return SimpleNamespace(output_text="  done  ", usage=None)

    client = _openai_client(monkeypatch, create)

    assert client.invoke(MESSAGES, max_output_tokens=4000) == "done"
    assert client._client.responses.calls[0]["max_output_tokens"] == 4000


def test_invoke_gives_up_after_retries(monkeypatch) -> None:
    def create(**request):
        raise ConnectionError("connection refused")

    client = _openai_client(monkeypatch, create)

    with pytest.raises(MaxRetryErrorsException) as excinfo:
        client.invoke(MESSAGES, retries=3)

    assert len(client._client.responses.calls) == 3
    assert isinstance(excinfo.value.__cause__, ConnectionError)


def test_exhausted_retries_surface_as_repair_request_error(monkeypatch) -> None:
    def create(**request):
        raise ConnectionError("connection refused")

    client = _openai_client(monkeypatch, create)
    coordinator = RepairCoordinator(client, ProgressReporter())

    with pytest.raises(RepairRequestError) as excinfo:
        coordinator.request_completion("src/B.jsx", "make a B component")

    assert isinstance(excinfo.value.__cause__, MaxRetryErrorsException)
    assert len(client._client.responses.calls) == 3
