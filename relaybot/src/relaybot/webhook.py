"""aiohttp application exposing install, uninstall and webhook routes."""

from __future__ import annotations

import hmac
import logging
from typing import Any, Callable

import aiohttp
from aiohttp import web

from .config import AccessPolicy, RelayConfig
from .dispatcher import Dispatcher
from .formatting import validate_secret_token
from .sqlite_backend import SQLiteBackend
from .sqlite_store import SQLiteStateStore
from .store import ExpirySweeper, InMemoryStateStore, _now_s
from .tasks import BackgroundTasks
from .telegram import SECRET_HEADER, TelegramClient

logger = logging.getLogger(__name__)

GatewayFactory = Callable[[str], Any]


class Runtime:
    def __init__(
        self,
        *,
        config: RelayConfig,
        store,
        policy: AccessPolicy,
        tasks: BackgroundTasks,
        backend: SQLiteBackend | None = None,
        gateway_factory: GatewayFactory | None = None,
        now_func: Callable[[], int] = _now_s,
    ) -> None:
        self.config = config
        self.store = store
        self.policy = policy
        self.tasks = tasks
        self.backend = backend
        self.now_func = now_func
        self._gateway_factory = gateway_factory
        self.http: aiohttp.ClientSession | None = None

    def gateway_for(self, bot_token: str):
        if self._gateway_factory is not None:
            return self._gateway_factory(bot_token)
        if self.http is None:
            raise RuntimeError("HTTP client session is not started")
        return TelegramClient(self.http, bot_token, api_base=self.config.api_base)


RUNTIME_KEY = web.AppKey("runtime", Runtime)


def _json_result(success: bool, message: str, status: int = 200) -> web.Response:
    return web.json_response({"success": success, "message": message}, status=status)


async def handle_health(_: web.Request) -> web.Response:
    return web.Response(text="ok")


def _webhook_url(request: web.Request, runtime: Runtime, owner_uid: str, bot_token: str) -> str:
    base = runtime.config.public_base_url or f"{request.scheme}://{request.host}"
    return f"{base}/{runtime.config.prefix}/webhook/{owner_uid}/{bot_token}"


async def handle_install(request: web.Request) -> web.Response:
    runtime = request.app[RUNTIME_KEY]
    secret = runtime.config.secret_token
    if not validate_secret_token(secret):
        return _json_result(False, "Invalid Secret Token", status=400)

    owner_uid = request.match_info["owner_uid"]
    bot_token = request.match_info["bot_token"]
    gateway = runtime.gateway_for(bot_token)
    try:
        await gateway.set_webhook(_webhook_url(request, runtime, owner_uid, bot_token), secret)
    except Exception as exc:
        logger.warning("webhook install for owner %s failed: %s", owner_uid, exc)
        return _json_result(False, str(exc), status=500)
    logger.info("webhook installed for owner %s", owner_uid)
    return _json_result(True, "Webhook installed.")


async def handle_uninstall(request: web.Request) -> web.Response:
    runtime = request.app[RUNTIME_KEY]
    if not validate_secret_token(runtime.config.secret_token):
        return _json_result(False, "Invalid Token", status=400)

    gateway = runtime.gateway_for(request.match_info["bot_token"])
    try:
        await gateway.delete_webhook()
    except Exception as exc:
        logger.warning("webhook uninstall failed: %s", exc)
        return _json_result(False, str(exc), status=500)
    return _json_result(True, "Webhook uninstalled.")


def _authorized(request: web.Request, secret: str) -> bool:
    presented = request.headers.get(SECRET_HEADER)
    if not secret or presented is None:
        return False
    return hmac.compare_digest(presented.encode("utf-8"), secret.encode("utf-8"))


async def handle_webhook(request: web.Request) -> web.Response:
    runtime = request.app[RUNTIME_KEY]
    if not _authorized(request, runtime.config.secret_token):
        return web.Response(text="Unauthorized", status=401)

    try:
        update = await request.json()
    except ValueError:
        logger.debug("ignoring webhook body that is not JSON")
        return web.Response(text="OK")

    dispatcher = Dispatcher(
        request.match_info["owner_uid"],
        runtime.gateway_for(request.match_info["bot_token"]),
        runtime.store,
        policy=runtime.policy,
        tasks=runtime.tasks,
        now_func=runtime.now_func,
    )
    await dispatcher.dispatch(update)
    return web.Response(text="OK")


def create_app(
    config: RelayConfig | None = None,
    *,
    store=None,
    policy: AccessPolicy | None = None,
    gateway_factory: GatewayFactory | None = None,
    now_func: Callable[[], int] = _now_s,
    start_sweeper: bool = True,
) -> web.Application:
    config = config or RelayConfig()
    backend: SQLiteBackend | None = None
    if store is None:
        if config.db_path is not None:
            backend = SQLiteBackend(config.db_path)
            store = SQLiteStateStore(backend, now_func=now_func)
        else:
            store = InMemoryStateStore(now_func=now_func)

    runtime = Runtime(
        config=config,
        store=store,
        policy=policy or AccessPolicy(),
        tasks=BackgroundTasks(),
        backend=backend,
        gateway_factory=gateway_factory,
        now_func=now_func,
    )
    sweeper = ExpirySweeper(store, config.sweep_interval_s)

    app = web.Application()
    app[RUNTIME_KEY] = runtime
    prefix = config.prefix
    app.router.add_get("/healthz", handle_health)
    app.router.add_route("*", f"/{prefix}/install/{{owner_uid}}/{{bot_token}}", handle_install)
    app.router.add_route("*", f"/{prefix}/uninstall/{{bot_token}}", handle_uninstall)
    app.router.add_post(f"/{prefix}/webhook/{{owner_uid}}/{{bot_token}}", handle_webhook)

    async def start_runtime(_: web.Application) -> None:
        if gateway_factory is None:
            runtime.http = aiohttp.ClientSession()
        if start_sweeper and hasattr(store, "expire"):
            sweeper.start()

    async def drain_tasks(_: web.Application) -> None:
        await runtime.tasks.drain()

    async def stop_runtime(_: web.Application) -> None:
        await sweeper.stop()
        if runtime.http is not None:
            await runtime.http.close()
            runtime.http = None
        if backend is not None:
            backend.close()

    app.on_startup.append(start_runtime)
    app.on_shutdown.append(drain_tasks)
    app.on_cleanup.append(stop_runtime)
    return app
