import asyncio
import threading
import time

import pytest

from vetchat.errors import Overloaded, UpstreamFailure
from vetchat.services import ai_service
from vetchat.services.ai_stream_service import open_fragment_stream


class FakeApiError(Exception):
    def __init__(self, code: int):
        super().__init__(f"upstream error {code}")
        self.code = code


def _create_chat(client, headers):
    return client.post("/api/chats", json={"text": "Is chocolate toxic to cats?"}, headers=headers).json()[
        "metadata"
    ]["data"]


def test_with_system_prompt_adds_prompt_once():
    history = [{"role": "user", "content": "hi"}]
    once = ai_service.with_system_prompt(history)
    assert once[0] == {"role": "system", "content": ai_service.ASSISTANT_SYSTEM_PROMPT}
    assert once[1:] == history

    twice = ai_service.with_system_prompt(once)
    assert [m["role"] for m in twice].count("system") == 1


def test_caller_system_message_replaces_default_prompt():
    history = [{"role": "system", "content": "Be brief."}, {"role": "user", "content": "hi"}]
    assert ai_service.with_system_prompt(history) == history


def test_build_chat_request_maps_roles():
    system, contents = ai_service._build_chat_request(
        [
            {"role": "system", "content": "Be brief."},
            {"role": "user", "content": "Hi"},
            {"role": "assistant", "content": ""},
            {"role": "assistant", "content": "Hello!"},
        ]
    )
    assert system == "Be brief."
    assert [c.role for c in contents] == ["user", "model"]
    assert contents[1].parts[0].text == "Hello!"


def test_completion_relays_fragments_in_order(client, alice_headers, fake_chat_stream):
    chat_id = _create_chat(client, alice_headers)
    history = [{"role": "user", "content": "Is chocolate toxic to cats?"}]

    response = client.post(f"/api/chat/{chat_id}", json={"messages": history}, headers=alice_headers)

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/plain")
    assert response.headers["cache-control"] == "no-cache, no-transform"
    assert response.text == "Hello, world"

    sent = fake_chat_stream.calls[0]
    assert sent[0]["role"] == "system"
    assert sent[1:] == history


def test_completion_for_foreign_chat_is_not_found(client, alice_headers, bob_headers, fake_chat_stream):
    chat_id = _create_chat(client, alice_headers)
    response = client.post(
        f"/api/chat/{chat_id}",
        json={"messages": [{"role": "user", "content": "hi"}]},
        headers=bob_headers,
    )
    assert response.status_code == 404
    assert fake_chat_stream.calls == []


def test_completion_requires_messages(client, alice_headers):
    chat_id = _create_chat(client, alice_headers)
    response = client.post(f"/api/chat/{chat_id}", json={"messages": []}, headers=alice_headers)
    assert response.status_code == 400


def test_upstream_overload_maps_to_429(client, alice_headers, monkeypatch):
    def overloaded(messages, stop_event=None):
        raise FakeApiError(429)
        yield  # pragma: no cover

    monkeypatch.setattr(ai_service, "generate_chat_stream", overloaded)
    chat_id = _create_chat(client, alice_headers)

    response = client.post(
        f"/api/chat/{chat_id}",
        json={"messages": [{"role": "user", "content": "hi"}]},
        headers=alice_headers,
    )
    assert response.status_code == 429
    assert response.json() == {"success": False, "message": Overloaded.default_message}


def test_upstream_failure_maps_to_502(client, alice_headers, monkeypatch):
    def broken(messages, stop_event=None):
        raise FakeApiError(500)
        yield  # pragma: no cover

    monkeypatch.setattr(ai_service, "generate_chat_stream", broken)
    chat_id = _create_chat(client, alice_headers)

    response = client.post(
        f"/api/chat/{chat_id}",
        json={"messages": [{"role": "user", "content": "hi"}]},
        headers=alice_headers,
    )
    assert response.status_code == 502
    assert response.json()["message"] == UpstreamFailure.default_message


@pytest.mark.asyncio
async def test_abort_stops_and_closes_upstream():
    closed = threading.Event()
    produced = []

    def produce(stop):
        try:
            produced.append("first")
            yield "first"
            while not stop.is_set():
                time.sleep(0.01)
            produced.append("after-stop")
            yield "after-stop"
        finally:
            closed.set()

    stream = await open_fragment_stream(produce)
    fragments = stream.fragments()
    assert await fragments.__anext__() == "first"
    await fragments.aclose()

    assert stream.aborted
    loop = asyncio.get_event_loop()
    assert await loop.run_in_executor(None, closed.wait, 2)


@pytest.mark.asyncio
async def test_open_fragment_stream_surfaces_start_failures():
    def produce(stop):
        raise FakeApiError(429)
        yield  # pragma: no cover

    with pytest.raises(Overloaded):
        await open_fragment_stream(produce)
