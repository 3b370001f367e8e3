from __future__ import annotations

import logging
from enum import Enum
from typing import Any, Dict

import aiohttp

from .config import AccessPolicy
from .formatting import edited_relay_text, identity_markup, is_numeric_identity, sender_from_markup
from .tasks import BackgroundTasks
from .telegram import TelegramApiError

logger = logging.getLogger(__name__)


class RelayAction(Enum):
    EDITED = "edited"
    COPIED = "copied"
    FAILED = "failed"


def mapping_key(identity: str, message_id: int | str) -> str:
    return f"map:{identity}:{message_id}"


def _chat_id(identity: str) -> int | str:
    return int(identity) if is_numeric_identity(identity) else identity


class RelayMapper:
    """Copies admitted messages into the owner's chat and routes replies back.

    Each relayed copy carries one button naming the sender, which is how an
    owner reply finds its way back. ``map:`` rows remember where a copy went
    so that a quick edit by the sender can be mirrored onto it.
    """

    def __init__(
        self,
        owner_id: str,
        store,
        gateway,
        *,
        policy: AccessPolicy | None = None,
        tasks: BackgroundTasks | None = None,
    ) -> None:
        self.owner_id = owner_id
        self.store = store
        self.gateway = gateway
        self.policy = policy or AccessPolicy()
        self.tasks = tasks or BackgroundTasks()

    def _within_edit_window(self, message: Dict[str, Any], now: int) -> bool:
        sent_at = message.get("date")
        if not isinstance(sent_at, int):
            return True
        edited_at = message.get("edit_date") or now
        return edited_at - sent_at <= self.policy.edit_window_s

    async def _sync_edit(self, identity: str, message: Dict[str, Any]) -> bool:
        stored = await self.store.get(mapping_key(identity, message["message_id"]))
        if stored is None:
            return False
        self.tasks.spawn(
            self.gateway.edit_message_text(
                _chat_id(self.owner_id),
                int(stored),
                edited_relay_text(message["text"], identity),
                reply_markup=identity_markup(identity),
            ),
            name=f"edit-sync:{identity}:{message['message_id']}",
        )
        return True

    async def _copy_to_owner(self, identity: str, message: Dict[str, Any], *, as_link: bool) -> Any:
        return await self.gateway.copy_message(
            _chat_id(self.owner_id),
            message["chat"]["id"],
            message["message_id"],
            reply_markup=identity_markup(identity, as_link=as_link),
        )

    async def relay_inbound(self, message: Dict[str, Any], *, is_edit: bool, now: int) -> RelayAction:
        identity = str(message["chat"]["id"])
        message_id = message["message_id"]

        if is_edit and message.get("text") and self._within_edit_window(message, now):
            if await self._sync_edit(identity, message):
                return RelayAction.EDITED

        self.tasks.spawn(self.gateway.send_chat_action(message["chat"]["id"], "typing"), name=f"typing:{identity}")

        result = None
        if is_numeric_identity(identity):
            try:
                result = await self._copy_to_owner(identity, message, as_link=True)
            except (TelegramApiError, aiohttp.ClientError) as exc:
                logger.info("profile link relay for %s rejected, retrying with callback button: %s", identity, exc)
        if result is None:
            try:
                result = await self._copy_to_owner(identity, message, as_link=False)
            except (TelegramApiError, aiohttp.ClientError) as exc:
                logger.warning("relay of message %s from %s failed: %s", message_id, identity, exc)
                return RelayAction.FAILED

        relayed_id = result.get("message_id") if isinstance(result, dict) else None
        if relayed_id is not None:
            self.tasks.spawn(
                self.store.put(mapping_key(identity, message_id), str(relayed_id), self.policy.mapping_ttl_s),
                name=f"map:{identity}:{message_id}",
            )
        return RelayAction.COPIED

    async def relay_owner_reply(self, message: Dict[str, Any]) -> str | None:
        """Send the owner's reply to whoever the replied-to copy came from."""

        reply = message.get("reply_to_message") or {}
        identity = sender_from_markup(reply.get("reply_markup"))
        if identity is None:
            logger.debug("owner replied to message %s with no sender button", reply.get("message_id"))
            return None
        self.tasks.spawn(
            self.gateway.copy_message(_chat_id(identity), message["chat"]["id"], message["message_id"]),
            name=f"owner-reply:{identity}",
        )
        return identity
