"""Per-identity challenge, verification and ban state machine.

State is never stored explicitly. It is derived from which of the
``blacklist:``, ``pending:`` and ``verified:`` rows exist for an identity,
read together once per operation. A ban always wins over the other rows.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum

from .config import AccessPolicy
from .formatting import (
    ban_notice,
    challenge_markup,
    challenge_success_text,
    challenge_text,
    challenge_timeout_text,
    format_utc_time,
    timeout_ban_notice,
)
from .tasks import BackgroundTasks

logger = logging.getLogger(__name__)

VERIFIED_SENTINEL = "true"


class AccessState(Enum):
    UNKNOWN = "unknown"
    BANNED = "banned"
    PENDING = "pending"
    VERIFIED = "verified"


class Admission(Enum):
    ADMIT = "admit"
    BLOCKED = "blocked"


def blacklist_key(identity: str) -> str:
    return f"blacklist:{identity}"


def pending_key(identity: str) -> str:
    return f"pending:{identity}"


def verified_key(identity: str) -> str:
    return f"verified:{identity}"


@dataclass(frozen=True)
class AccessSnapshot:
    identity: str
    banned_until: int | None
    pending_since: int | None
    verified: bool

    @property
    def state(self) -> AccessState:
        if self.banned_until is not None:
            return AccessState.BANNED
        if self.pending_since is not None:
            return AccessState.PENDING
        if self.verified:
            return AccessState.VERIFIED
        return AccessState.UNKNOWN


class AccessControl:
    def __init__(
        self,
        store,
        gateway,
        *,
        policy: AccessPolicy | None = None,
        tasks: BackgroundTasks | None = None,
    ) -> None:
        self.store = store
        self.gateway = gateway
        self.policy = policy or AccessPolicy()
        self.tasks = tasks or BackgroundTasks()

    async def snapshot(self, identity: str, *, include_verified: bool = True) -> AccessSnapshot:
        reads = [self.store.get(blacklist_key(identity)), self.store.get(pending_key(identity))]
        if include_verified:
            reads.append(self.store.get(verified_key(identity)))
        values = await asyncio.gather(*reads)
        banned_until, pending_since = values[0], values[1]
        verified = values[2] if include_verified else None
        return AccessSnapshot(
            identity=identity,
            banned_until=int(banned_until) if banned_until is not None else None,
            pending_since=int(pending_since) if pending_since is not None else None,
            verified=verified is not None,
        )

    def _timed_out(self, snapshot: AccessSnapshot, now: int) -> bool:
        return now - snapshot.pending_since > self.policy.challenge_window_s

    async def _ban(self, identity: str, now: int) -> int:
        unban_at = now + self.policy.ban_duration_s
        await asyncio.gather(
            self.store.put(blacklist_key(identity), str(unban_at), self.policy.ban_duration_s),
            self.store.delete(pending_key(identity)),
        )
        logger.info("challenge timed out for %s, banned until %s", identity, format_utc_time(unban_at))
        return unban_at

    async def check_admission(self, identity: str, now: int) -> Admission:
        """Decide whether an inbound message from ``identity`` may be relayed."""

        snapshot = await self.snapshot(identity)
        state = snapshot.state

        if state is AccessState.BANNED:
            self.tasks.spawn(
                self.gateway.send_message(identity, ban_notice(snapshot.banned_until), parse_mode="HTML"),
                name=f"ban-notice:{identity}",
            )
            return Admission.BLOCKED

        if state is AccessState.PENDING:
            if self._timed_out(snapshot, now):
                unban_at = await self._ban(identity, now)
                self.tasks.spawn(
                    self.gateway.send_message(identity, timeout_ban_notice(unban_at), parse_mode="HTML"),
                    name=f"ban-notice:{identity}",
                )
            # An outstanding challenge is not re-announced to burst traffic.
            return Admission.BLOCKED

        if state is AccessState.UNKNOWN:
            deadline = now + self.policy.challenge_window_s
            await asyncio.gather(
                self.store.put(pending_key(identity), str(now)),
                self.gateway.send_message(
                    identity,
                    challenge_text(deadline, self.policy.challenge_window_s),
                    parse_mode="HTML",
                    reply_markup=challenge_markup(),
                ),
            )
            logger.info("challenge issued to %s, deadline %s", identity, format_utc_time(deadline))
            return Admission.BLOCKED

        return Admission.ADMIT

    async def resolve_challenge(
        self,
        identity: str,
        now: int,
        *,
        query_id: str,
        chat_id: int | str | None = None,
        message_id: int | None = None,
    ) -> AccessState:
        """Handle a press of the challenge button and return the resulting state.

        ``chat_id``/``message_id`` locate the challenge message so it can be
        rewritten with the outcome; without them only the press is answered.
        """

        snapshot = await self.snapshot(identity, include_verified=False)

        if snapshot.banned_until is not None:
            self.tasks.spawn(
                self.gateway.answer_callback_query(
                    query_id, f"⛔️ Banned until: {format_utc_time(snapshot.banned_until)}", show_alert=True
                ),
                name=f"answer:{query_id}",
            )
            return AccessState.BANNED

        if snapshot.pending_since is None:
            self.tasks.spawn(
                self.gateway.answer_callback_query(query_id, "⚠️ Session expired.", show_alert=True),
                name=f"answer:{query_id}",
            )
            return AccessState.UNKNOWN

        editable = chat_id is not None and message_id is not None

        if self._timed_out(snapshot, now):
            unban_at = await self._ban(identity, now)
            self.tasks.spawn(
                self.gateway.answer_callback_query(
                    query_id, f"❌ Timeout! Banned until {format_utc_time(unban_at)}", show_alert=True
                ),
                name=f"answer:{query_id}",
            )
            if editable:
                self.tasks.spawn(
                    self.gateway.edit_message_text(
                        chat_id, message_id, challenge_timeout_text(unban_at), parse_mode="HTML"
                    ),
                    name=f"challenge-outcome:{identity}",
                )
            return AccessState.BANNED

        await asyncio.gather(
            self.store.put(verified_key(identity), VERIFIED_SENTINEL, self.policy.verified_ttl_s),
            self.store.delete(pending_key(identity)),
        )
        logger.info("%s passed the challenge", identity)
        self.tasks.spawn(self.gateway.answer_callback_query(query_id, "✅ Verified!"), name=f"answer:{query_id}")
        if editable:
            self.tasks.spawn(
                self.gateway.edit_message_text(
                    chat_id, message_id, challenge_success_text(self.policy.verified_ttl_s)
                ),
                name=f"challenge-outcome:{identity}",
            )
        return AccessState.VERIFIED
