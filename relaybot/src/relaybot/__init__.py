"""One-to-many relay bot with a timed verification challenge."""

from .access import AccessControl, AccessSnapshot, AccessState, Admission
from .config import AccessPolicy, RelayConfig, load_config_from_env
from .dispatcher import Dispatcher, EventKind, classify
from .relay import RelayAction, RelayMapper
from .store import InMemoryStateStore
from .telegram import TelegramApiError, TelegramClient

__all__ = [
    "AccessControl",
    "AccessPolicy",
    "AccessSnapshot",
    "AccessState",
    "Admission",
    "Dispatcher",
    "EventKind",
    "InMemoryStateStore",
    "RelayAction",
    "RelayConfig",
    "RelayMapper",
    "TelegramApiError",
    "TelegramClient",
    "classify",
    "load_config_from_env",
]
