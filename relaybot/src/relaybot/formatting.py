"""Notice texts, time rendering and inline keyboard builders."""

from __future__ import annotations

import re
from datetime import datetime, timezone
from typing import Any

CHALLENGE_CALLBACK = "captcha_verify"
START_COMMAND = "/start"
USER_LINK_PREFIX = "tg://user?id="

_NUMERIC_ID = re.compile(r"^\d+$")


def validate_secret_token(token: str) -> bool:
    """Telegram secret tokens must be long and mix upper, lower and digits."""

    return (
        len(token) > 15
        and re.search(r"[A-Z]", token) is not None
        and re.search(r"[a-z]", token) is not None
        and re.search(r"[0-9]", token) is not None
    )


def is_numeric_identity(identity: str) -> bool:
    return _NUMERIC_ID.match(identity) is not None


def format_utc_time(timestamp: int) -> str:
    return datetime.fromtimestamp(timestamp, tz=timezone.utc).strftime("%Y-%m-%d %H:%M:%S") + " UTC"


def format_utc_clock(timestamp: int) -> str:
    return datetime.fromtimestamp(timestamp, tz=timezone.utc).strftime("%H:%M:%S")


def ban_notice(unban_at: int) -> str:
    return f"⛔️ Banned until:\n<b>{format_utc_time(unban_at)}</b>"


def timeout_ban_notice(unban_at: int) -> str:
    return f"⛔️ Timeout. Banned until:\n<b>{format_utc_time(unban_at)}</b>"


def challenge_text(deadline: int, window_s: int) -> str:
    return (
        "🛡 <b>Verification</b>\n\n"
        f"Verify in <b>{window_s}s</b>.\n"
        f"Deadline: <b>{format_utc_clock(deadline)} (UTC)</b>\n"
        "Timeout = Ban 24h."
    )


def challenge_timeout_text(unban_at: int) -> str:
    return f"⛔️ Verification timed out.\nBanned until:\n<b>{format_utc_time(unban_at)}</b>"


def challenge_success_text(verified_ttl_s: int) -> str:
    hours = max(1, verified_ttl_s // 3600)
    unit = "hour" if hours == 1 else "hours"
    return f"✅ Verified. Session valid for {hours} {unit}."


def edited_relay_text(text: str, identity: str) -> str:
    return f"{text}\n\n(Ed) ID: {identity}"


def challenge_markup() -> dict[str, Any]:
    return {"inline_keyboard": [[{"text": "⚡️ Verify Now", "callback_data": CHALLENGE_CALLBACK}]]}


def identity_markup(identity: str, *, as_link: bool = False) -> dict[str, Any]:
    """One button labelled with ``identity``.

    A button may carry a ``url`` or ``callback_data``, never both; the link form
    opens the sender's profile and only works for numeric user ids.
    """

    button: dict[str, Any] = {"text": identity}
    if as_link:
        button["url"] = f"{USER_LINK_PREFIX}{identity}"
    else:
        button["callback_data"] = identity
    return {"inline_keyboard": [[button]]}


def sender_from_markup(reply_markup: Any) -> str | None:
    """Recover the sender identity from the first button of a relayed copy."""

    if not isinstance(reply_markup, dict):
        return None
    rows = reply_markup.get("inline_keyboard")
    if not isinstance(rows, list) or not rows or not isinstance(rows[0], list) or not rows[0]:
        return None
    button = rows[0][0]
    if not isinstance(button, dict):
        return None
    data = button.get("callback_data")
    if isinstance(data, str) and data:
        return data
    url = button.get("url")
    if isinstance(url, str) and url.startswith(USER_LINK_PREFIX):
        return url[len(USER_LINK_PREFIX) :] or None
    return None
