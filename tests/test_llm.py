import asyncio
from types import SimpleNamespace

import pytest

from core.errors import GenerationError
from services.llm import OllamaClient


class StubChat:
    def __init__(self, content="  Cowboys roll on.  ", error=None, delay=0.0):
        self.content = content
        self.error = error
        self.delay = delay
        self.calls = []

    async def ainvoke(self, messages):
        self.calls.append(messages)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error:
            raise self.error
        return SimpleNamespace(content=self.content)


class StubEmbeddings:
    def __init__(self, error=None):
        self.error = error
        self.calls = []

    async def aembed_documents(self, texts):
        self.calls.append(list(texts))
        if self.error:
            raise self.error
        return [[float(len(text)), 1.0] for text in texts]


def make_client(**kwargs) -> OllamaClient:
    return OllamaClient(base_url="http://localhost:11434/v1/", model="llama3.1", **kwargs)


def stub_chat(client, chat):
    requested = []

    def _chat(max_tokens, json_mode):
        requested.append((max_tokens, json_mode))
        return chat

    client._chat = _chat
    return requested


def test_base_url_drops_openai_suffix():
    assert make_client().base_url == "http://localhost:11434"
    assert OllamaClient(base_url="http://ollama:11434/v1", model="m").base_url == "http://ollama:11434"
    assert OllamaClient(base_url="http://ollama:11434/", model="m").base_url == "http://ollama:11434"


def test_chat_models_are_configured_and_cached():
    client = make_client()

    json_chat = client._chat(300, True)
    text_chat = client._chat(400, False)

    assert json_chat.format == "json"
    assert json_chat.num_predict == 300
    assert json_chat.base_url == "http://localhost:11434"
    assert text_chat.format != "json"
    assert text_chat.num_predict == 400
    assert client._chat(300, True) is json_chat


def test_complete_strips_content():
    client = make_client()
    chat = StubChat()
    requested = stub_chat(client, chat)

    result = asyncio.run(client.complete("Summarize the week", max_tokens=250, json_mode=True))

    assert result == "Cowboys roll on."
    assert requested == [(250, True)]
    assert chat.calls[0][0].content == "Summarize the week"


def test_complete_failure_is_a_single_attempt():
    client = make_client()
    chat = StubChat(error=ConnectionError("connection refused"))
    stub_chat(client, chat)

    with pytest.raises(GenerationError, match="connection refused"):
        asyncio.run(client.complete("prompt"))
    assert len(chat.calls) == 1


def test_complete_timeout_raises_generation_error():
    client = make_client(timeout=0.05)
    chat = StubChat(delay=1.0)
    stub_chat(client, chat)

    with pytest.raises(GenerationError, match="timed out"):
        asyncio.run(client.complete("prompt"))
    assert len(chat.calls) == 1


def test_embed_returns_vectors():
    client = make_client()
    client.embeddings = StubEmbeddings()

    vectors = asyncio.run(client.embed(["abc", "de"]))

    assert vectors == [[3.0, 1.0], [2.0, 1.0]]
    assert client.embeddings.calls == [["abc", "de"]]


def test_embed_failure_is_a_single_attempt():
    client = make_client()
    client.embeddings = StubEmbeddings(error=ConnectionError("connect failed"))

    with pytest.raises(GenerationError, match="Embedding failed"):
        asyncio.run(client.embed(["abc"]))
    assert len(client.embeddings.calls) == 1


def test_embed_skips_empty_batches():
    client = make_client()
    client.embeddings = StubEmbeddings()

    assert asyncio.run(client.embed([])) == []
    assert client.embeddings.calls == []
