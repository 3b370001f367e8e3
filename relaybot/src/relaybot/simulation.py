from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, TextIO

from .telegram import TelegramApiError, TelegramClient

Rejector = Callable[[str, Dict[str, Any]], Optional[str]]


@dataclass
class RecordedCall:
    method: str
    payload: Dict[str, Any]


@dataclass
class Clock:
    now: int = 0

    def __call__(self) -> int:
        return self.now

    def advance(self, seconds: int) -> None:
        self.now += seconds


class RecordingGateway(TelegramClient):
    """Gateway that records Bot API calls instead of sending them.

    ``reject`` may return an error description for a call, which is then
    raised as :class:`TelegramApiError` like a real ``ok: false`` answer.
    Calls are echoed as JSON lines to ``output`` when one is given.
    """

    def __init__(self, *, output: TextIO | None = None, reject: Rejector | None = None, first_message_id: int = 1) -> None:
        self.calls: List[RecordedCall] = []
        self._output = output
        self._reject = reject
        self._next_message_id = first_message_id

    async def call(self, method: str, payload: Dict[str, Any]) -> Any:
        body = {key: value for key, value in payload.items() if value is not None}
        self.calls.append(RecordedCall(method, body))
        if self._output is not None:
            self._output.write(json.dumps({"method": method, "payload": body}, ensure_ascii=False) + "\n")
        if self._reject is not None:
            description = self._reject(method, body)
            if description is not None:
                raise TelegramApiError(method, 400, description)
        if method in {"sendMessage", "copyMessage"}:
            message_id = self._next_message_id
            self._next_message_id += 1
            return {"message_id": message_id}
        return True

    def calls_to(self, method: str) -> List[RecordedCall]:
        return [call for call in self.calls if call.method == method]
