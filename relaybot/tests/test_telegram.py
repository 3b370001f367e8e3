import importlib.util
import unittest

_aiohttp_spec = importlib.util.find_spec("aiohttp")
if _aiohttp_spec is None:
    raise RuntimeError("aiohttp must be installed for Bot API client tests")

import aiohttp
from aiohttp import web
from aiohttp.test_utils import TestServer

from relaybot.telegram import TelegramApiError, TelegramClient


class FakeBotApi:
    """Answers Bot API calls from a canned table and records what it received."""

    def __init__(self) -> None:
        self.received: list[tuple[str, str, dict]] = []
        self.answers: dict[str, web.Response] = {}

    async def handle(self, request: web.Request) -> web.Response:
        body = await request.json()
        method = request.match_info["method"]
        self.received.append((request.match_info["token"], method, body))
        if method in self.answers:
            return self.answers[method]
        return web.json_response({"ok": True, "result": {"message_id": 42}})

    def app(self) -> web.Application:
        app = web.Application()
        app.router.add_post("/bot{token}/{method}", self.handle)
        return app


class TelegramClientTests(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self) -> None:
        self.api = FakeBotApi()
        self.server = TestServer(self.api.app())
        await self.server.start_server()
        self.session = aiohttp.ClientSession()
        self.client = TelegramClient(self.session, "123:ABC", api_base=str(self.server.make_url("/")))

    async def asyncTearDown(self) -> None:
        await self.session.close()
        await self.server.close()

    async def test_call_returns_result_and_strips_unset_fields(self):
        result = await self.client.send_message(555, "hello")

        self.assertEqual(result, {"message_id": 42})
        self.assertEqual(self.api.received, [("123:ABC", "sendMessage", {"chat_id": 555, "text": "hello"})])

    async def test_copy_message_with_markup(self):
        markup = {"inline_keyboard": [[{"text": "555", "callback_data": "555"}]]}

        await self.client.copy_message(999, 555, 10, reply_markup=markup)

        _, method, body = self.api.received[0]
        self.assertEqual(method, "copyMessage")
        self.assertEqual(body, {"chat_id": 999, "from_chat_id": 555, "message_id": 10, "reply_markup": markup})

    async def test_api_error_is_raised(self):
        self.api.answers["copyMessage"] = web.json_response(
            {"ok": False, "error_code": 400, "description": "Bad Request: BUTTON_USER_INVALID"}, status=400
        )

        with self.assertRaises(TelegramApiError) as ctx:
            await self.client.copy_message(999, 555, 10)

        self.assertEqual(ctx.exception.method, "copyMessage")
        self.assertEqual(ctx.exception.error_code, 400)
        self.assertIn("BUTTON_USER_INVALID", ctx.exception.description)

    async def test_non_json_answer_is_an_api_error(self):
        self.api.answers["deleteWebhook"] = web.Response(text="<html>bad gateway</html>", status=502)

        with self.assertRaises(TelegramApiError) as ctx:
            await self.client.delete_webhook()

        self.assertEqual(ctx.exception.error_code, 502)

    async def test_set_webhook_payload(self):
        await self.client.set_webhook("https://relay.example/public/webhook/1/2", "Secret1234567890")

        _, method, body = self.api.received[0]
        self.assertEqual(method, "setWebhook")
        self.assertEqual(body["allowed_updates"], ["message", "edited_message", "callback_query"])
        self.assertEqual(body["secret_token"], "Secret1234567890")


if __name__ == "__main__":
    unittest.main()
