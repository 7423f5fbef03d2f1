import httpx
import pytest

from conftest import ALICE, BOB
from vetchat.auth import create_access_token
from vetchat.client.api import ChatApiClient
from vetchat.client.controller import ChatController, Done
from vetchat.errors import Unauthorized, ValidationFailure
from vetchat.main import app


def _api(http, user_id=ALICE):
    return ChatApiClient("http://test", create_access_token(user_id), http=http)


@pytest.fixture
def transport():
    return httpx.ASGITransport(app=app)


@pytest.mark.asyncio
async def test_chat_actions_round_trip(transport):
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as http:
        api = _api(http)
        chat_id = await api.create_chat("Puppy vaccination schedule")

        await api.rename_chat(chat_id, "  Vaccines  ")
        assert (await api.get_chat(chat_id))["name"] == "Vaccines"

        with pytest.raises(ValidationFailure):
            await api.rename_chat(chat_id, "   ")

        chats = await api.list_chats()
        assert [c["id"] for c in chats["page"]] == [chat_id]

        await api.delete_chat(chat_id)
        assert await api.get_chat(chat_id) is None


@pytest.mark.asyncio
async def test_errors_map_back_to_taxonomy(transport):
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as http:
        chat_id = await _api(http).create_chat("Private question")
        intruder = _api(http, BOB)

        assert await intruder.get_chat(chat_id) is None
        with pytest.raises(Unauthorized):
            await intruder.list_messages(chat_id)


@pytest.mark.asyncio
async def test_controller_answers_new_chat_over_http(transport, fake_chat_stream):
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as http:
        api = _api(http)
        chat_id = await api.create_chat("Can cats eat tuna?")
        controller = ChatController(api, chat_id)

        assert await controller.mount(auto_trigger=True)

        assert controller.state == Done("Hello, world")
        assert fake_chat_stream.calls[0][1:] == [{"role": "user", "content": "Can cats eat tuna?"}]
        newest, first = controller.messages
        assert (newest["role"], newest["content"], newest["status"]) == ("assistant", "Hello, world", "sent")
        assert (first["role"], first["content"]) == ("user", "Can cats eat tuna?")


@pytest.mark.asyncio
async def test_long_reply_is_saved_and_finalized(transport, fake_chat_stream):
    fake_chat_stream.fragments = ["x" * 60_000, "y" * 60_000]
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as http:
        api = _api(http)
        chat_id = await api.create_chat("Tell me everything")
        controller = ChatController(api, chat_id)

        assert await controller.mount(auto_trigger=True)

        assert controller.error is None
        newest = controller.messages[0]
        assert newest["status"] == "sent"
        assert newest["content"] == "x" * 60_000 + "y" * 60_000
