import asyncio
import json

import httpx
import pytest

from tripdispatch.services.telegram import TelegramClient, TelegramError


def _client(handler, token="42:ABC"):
    return TelegramClient(token, "https://api.test", transport=httpx.MockTransport(handler))


def test_send_message_posts_json_to_bot_url():
    seen = {}

    def handler(request):
        seen["url"] = str(request.url)
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"ok": True, "result": {"message_id": 10}})

    result = asyncio.run(_client(handler).send_message(5, "<b>hi</b>"))

    assert result == {"message_id": 10}
    assert seen["url"] == "https://api.test/bot42:ABC/sendMessage"
    assert seen["body"]["chat_id"] == 5
    assert seen["body"]["parse_mode"] == "HTML"
    assert "reply_markup" not in seen["body"]


def test_api_error_raises():
    def handler(request):
        return httpx.Response(403, json={"ok": False, "description": "Forbidden: bot was blocked by the user"})

    with pytest.raises(TelegramError, match="blocked"):
        asyncio.run(_client(handler).send_message(5, "x"))


def test_network_error_raises():
    def handler(request):
        raise httpx.ConnectError("boom", request=request)

    with pytest.raises(TelegramError, match="sendMessage"):
        asyncio.run(_client(handler).send_message(5, "x"))


def test_missing_token_raises():
    with pytest.raises(TelegramError):
        asyncio.run(TelegramClient(None).get_webhook_info())


def test_remove_buttons_is_best_effort():
    def handler(request):
        return httpx.Response(400, json={"ok": False, "description": "message is not modified"})

    assert asyncio.run(_client(handler).remove_buttons(5, 77)) is False
