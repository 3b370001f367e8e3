from __future__ import annotations

import logging
from enum import Enum
from typing import Any, Callable, Dict

from .access import AccessControl, Admission
from .config import AccessPolicy
from .formatting import CHALLENGE_CALLBACK, START_COMMAND
from .relay import RelayMapper
from .store import _now_s
from .tasks import BackgroundTasks

logger = logging.getLogger(__name__)


class EventKind(Enum):
    BUTTON_PRESS = "button_press"
    OWNER_REPLY = "owner_reply"
    USER_MESSAGE = "user_message"
    IGNORED = "ignored"


def _message_of(update: Dict[str, Any]) -> tuple[Dict[str, Any] | None, bool]:
    edited = update.get("edited_message")
    message = update.get("message") or edited
    if not isinstance(message, dict):
        return None, False
    return message, message is edited


def classify(update: Any, owner_id: str) -> EventKind:
    """Map a Bot API update onto the single route that handles it.

    The order of checks is significant: button presses first, then bot
    senders, then the owner, then everyone else.
    """

    if not isinstance(update, dict):
        return EventKind.IGNORED

    query = update.get("callback_query")
    if query is not None:
        if not isinstance(query, dict) or query.get("data") != CHALLENGE_CALLBACK:
            return EventKind.IGNORED
        sender = query.get("from")
        if not isinstance(sender, dict) or sender.get("id") is None:
            return EventKind.IGNORED
        return EventKind.BUTTON_PRESS

    message, _ = _message_of(update)
    if message is None:
        return EventKind.IGNORED
    sender = message.get("from")
    if isinstance(sender, dict) and sender.get("is_bot"):
        return EventKind.IGNORED
    chat = message.get("chat")
    if not isinstance(chat, dict) or chat.get("id") is None or message.get("message_id") is None:
        return EventKind.IGNORED

    if str(chat["id"]) == owner_id:
        if isinstance(message.get("reply_to_message"), dict):
            return EventKind.OWNER_REPLY
        return EventKind.IGNORED
    return EventKind.USER_MESSAGE


class Dispatcher:
    """Routes one inbound update through access control and the relay.

    ``dispatch`` never raises: any failure is logged and the update counts as
    handled, because redelivering it could relay the same message twice.
    """

    def __init__(
        self,
        owner_id: str | int,
        gateway,
        store,
        *,
        policy: AccessPolicy | None = None,
        tasks: BackgroundTasks | None = None,
        now_func: Callable[[], int] = _now_s,
    ) -> None:
        self.owner_id = str(owner_id)
        self.tasks = tasks or BackgroundTasks()
        self._now = now_func
        policy = policy or AccessPolicy()
        self.access = AccessControl(store, gateway, policy=policy, tasks=self.tasks)
        self.relay = RelayMapper(self.owner_id, store, gateway, policy=policy, tasks=self.tasks)

    async def dispatch(self, update: Any) -> EventKind:
        try:
            kind = classify(update, self.owner_id)
            now = self._now()
            if kind is EventKind.BUTTON_PRESS:
                await self._handle_button_press(update["callback_query"], now)
            elif kind is EventKind.OWNER_REPLY:
                message, _ = _message_of(update)
                await self.relay.relay_owner_reply(message)
            elif kind is EventKind.USER_MESSAGE:
                message, is_edit = _message_of(update)
                await self._handle_user_message(message, is_edit, now)
            return kind
        except Exception:
            logger.exception("failed to handle update %s", update.get("update_id") if isinstance(update, dict) else None)
            return EventKind.IGNORED

    async def _handle_button_press(self, query: Dict[str, Any], now: int) -> None:
        identity = str(query["from"]["id"])
        challenge = query.get("message") or {}
        await self.access.resolve_challenge(
            identity,
            now,
            query_id=query.get("id"),
            chat_id=(challenge.get("chat") or {}).get("id"),
            message_id=challenge.get("message_id"),
        )

    async def _handle_user_message(self, message: Dict[str, Any], is_edit: bool, now: int) -> None:
        identity = str(message["chat"]["id"])
        if await self.access.check_admission(identity, now) is not Admission.ADMIT:
            return
        if not is_edit and message.get("text") == START_COMMAND:
            return
        await self.relay.relay_inbound(message, is_edit=is_edit, now=now)
