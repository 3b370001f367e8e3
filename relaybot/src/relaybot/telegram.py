"""Thin Bot API client used as the relay's messaging gateway."""

from __future__ import annotations

from typing import Any, Dict, Iterable

import aiohttp

ALLOWED_UPDATES = ("message", "edited_message", "callback_query")
SECRET_HEADER = "X-Telegram-Bot-Api-Secret-Token"


class TelegramApiError(Exception):
    def __init__(self, method: str, error_code: int | None, description: str) -> None:
        self.method = method
        self.error_code = error_code
        self.description = description
        super().__init__(f"{method} failed ({error_code}): {description}")


class TelegramClient:
    """Calls Bot API methods for one bot token over a shared client session."""

    def __init__(
        self,
        session: aiohttp.ClientSession,
        token: str,
        *,
        api_base: str = "https://api.telegram.org",
    ) -> None:
        self._session = session
        self._token = token
        self._api_base = api_base.rstrip("/")

    async def call(self, method: str, payload: Dict[str, Any]) -> Any:
        """POST ``payload`` to ``method`` and return the ``result`` field.

        Raises :class:`TelegramApiError` when the API answers ``ok: false`` or
        with a body that is not a Bot API envelope.
        """

        url = f"{self._api_base}/bot{self._token}/{method}"
        body = {key: value for key, value in payload.items() if value is not None}
        async with self._session.post(url, json=body) as response:
            try:
                data = await response.json(content_type=None)
            except ValueError as exc:
                raise TelegramApiError(method, response.status, "malformed response body") from exc
        if not isinstance(data, dict):
            raise TelegramApiError(method, response.status, "unexpected response shape")
        if not data.get("ok"):
            raise TelegramApiError(method, data.get("error_code", response.status), str(data.get("description", "")))
        return data.get("result")

    async def send_message(
        self,
        chat_id: int | str,
        text: str,
        *,
        parse_mode: str | None = None,
        reply_markup: dict | None = None,
    ) -> Any:
        return await self.call(
            "sendMessage",
            {"chat_id": chat_id, "text": text, "parse_mode": parse_mode, "reply_markup": reply_markup},
        )

    async def edit_message_text(
        self,
        chat_id: int | str,
        message_id: int,
        text: str,
        *,
        parse_mode: str | None = None,
        reply_markup: dict | None = None,
    ) -> Any:
        return await self.call(
            "editMessageText",
            {
                "chat_id": chat_id,
                "message_id": message_id,
                "text": text,
                "parse_mode": parse_mode,
                "reply_markup": reply_markup,
            },
        )

    async def answer_callback_query(self, callback_query_id: str, text: str, *, show_alert: bool = False) -> Any:
        return await self.call(
            "answerCallbackQuery",
            {"callback_query_id": callback_query_id, "text": text, "show_alert": show_alert},
        )

    async def copy_message(
        self,
        chat_id: int | str,
        from_chat_id: int | str,
        message_id: int,
        *,
        reply_markup: dict | None = None,
    ) -> Any:
        return await self.call(
            "copyMessage",
            {
                "chat_id": chat_id,
                "from_chat_id": from_chat_id,
                "message_id": message_id,
                "reply_markup": reply_markup,
            },
        )

    async def send_chat_action(self, chat_id: int | str, action: str = "typing") -> Any:
        return await self.call("sendChatAction", {"chat_id": chat_id, "action": action})

    async def set_webhook(
        self,
        url: str,
        secret_token: str,
        *,
        allowed_updates: Iterable[str] = ALLOWED_UPDATES,
    ) -> Any:
        return await self.call(
            "setWebhook",
            {"url": url, "allowed_updates": list(allowed_updates), "secret_token": secret_token},
        )

    async def delete_webhook(self) -> Any:
        return await self.call("deleteWebhook", {})
