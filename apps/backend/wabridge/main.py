from __future__ import annotations

import asyncio
import os
import threading
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from wabridge.account.bridge import BridgeAccountClient
from wabridge.account.driver import ClientFactory, LifecycleDriver
from wabridge.account.sessions import SessionStorage
from wabridge.api import (
    routes_cameras,
    routes_health,
    routes_settings,
    routes_state,
    routes_whatsapp,
    routes_ws,
)
from wabridge.bus.mqtt import MqttListener
from wabridge.config.migrate import SettingsStore, apply_env_overrides
from wabridge.config.schema import AppSettings
from wabridge.pipeline.cameras import CameraRegistry
from wabridge.pipeline.notifier import Notifier
from wabridge.pipeline.relay import EventRelay
from wabridge.pipeline.router import EventRouter
from wabridge.state.store import StateStore
from wabridge.util.logging import get_logger, setup_logging
from wabridge.util.paths import ensure_data_tree

logger = get_logger(__name__)

APP_VERSION = "0.1.0"


def _bridge_client_factory(settings: AppSettings) -> ClientFactory:
    def build(session_id: str, session_path: Path) -> BridgeAccountClient:
        return BridgeAccountClient(
            settings.whatsapp.bridge_url,
            session_id,
            session_path,
            token=settings.whatsapp.bridge_token,
        )

    return build


@dataclass
class BridgeState:
    settings_store: SettingsStore
    settings: AppSettings
    log_level: str
    data_dir: Path
    notifier: Notifier
    store: StateStore
    sessions: SessionStorage
    cameras: CameraRegistry
    router: EventRouter
    driver: LifecycleDriver
    relay: EventRelay
    mqtt: MqttListener | None
    _tasks: set[asyncio.Task[Any]] = field(default_factory=set, init=False, repr=False)
    _shutdown_lock: threading.Lock = field(default_factory=threading.Lock, init=False, repr=False)
    _shutdown_started: bool = field(default=False, init=False, repr=False)
    _shutdown_complete: bool = field(default=False, init=False, repr=False)

    @classmethod
    def create(
        cls,
        data_dir: str | None = None,
        bind: str | None = None,
        port: int | None = None,
        log_level: str = "info",
        client_factory: ClientFactory | None = None,
        start_event_bus: bool = True,
    ) -> "BridgeState":
        settings_store = SettingsStore(cli_data_dir=data_dir)

        updates: dict[str, Any] = {}
        if bind:
            updates["bind"] = bind
        if port:
            updates["port"] = port
        if updates:
            settings_store.update(**updates)

        settings = apply_env_overrides(settings_store.settings, os.environ)
        data_path = Path(settings.data_dir)
        tree = ensure_data_tree(data_path)
        setup_logging(log_level, data_path, debug=settings.debug)

        notifier = Notifier()
        store = StateStore(notifier)
        sessions = SessionStorage(tree["sessions"])
        cameras = CameraRegistry(
            store,
            persist_mappings=lambda mappings: settings_store.update(camera_group_mappings=mappings),
        )
        cameras.load_mappings(settings.camera_group_mappings)
        router = EventRouter(store, cameras, topic_root=settings.mqtt.topic_root)
        driver = LifecycleDriver(
            store,
            sessions,
            client_factory or _bridge_client_factory(settings),
            settings.whatsapp,
        )
        relay = EventRelay(notifier, cameras, driver, settings.relay_event_types)
        mqtt = MqttListener(settings.mqtt, store, router) if start_event_bus else None

        return cls(
            settings_store=settings_store,
            settings=settings,
            log_level=log_level,
            data_dir=data_path,
            notifier=notifier,
            store=store,
            sessions=sessions,
            cameras=cameras,
            router=router,
            driver=driver,
            relay=relay,
            mqtt=mqtt,
        )

    async def start(self) -> None:
        self.relay.attach()
        if self.mqtt is not None:
            self.mqtt.start(asyncio.get_running_loop())
        if self.settings.whatsapp.autostart:
            session_id = self.settings.whatsapp.session_id
            logger.info("Autostarting WhatsApp session %s", session_id)
            task = asyncio.create_task(self.driver.initialize(session_id))
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)

    async def stop(self) -> None:
        self.begin_shutdown()
        for task in list(self._tasks):
            task.cancel()
        await asyncio.gather(*list(self._tasks), return_exceptions=True)
        self.relay.detach()
        await self.relay.drain()
        await self.driver.aclose()
        self.shutdown()

    def begin_shutdown(self) -> None:
        with self._shutdown_lock:
            if self._shutdown_started:
                return
            self._shutdown_started = True
        if self.mqtt is not None:
            self.mqtt.stop()

    def shutdown(self) -> None:
        self.begin_shutdown()
        with self._shutdown_lock:
            if self._shutdown_complete:
                return
            self._shutdown_complete = True
        logger.info("Bridge runtime stopped")


def create_app(
    data_dir: str | None = None,
    bind: str | None = None,
    port: int | None = None,
    log_level: str = "info",
    client_factory: ClientFactory | None = None,
    start_event_bus: bool = True,
) -> FastAPI:
    state = BridgeState.create(
        data_dir=data_dir,
        bind=bind,
        port=port,
        log_level=log_level,
        client_factory=client_factory,
        start_event_bus=start_event_bus,
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await app.state.bridge.start()
        try:
            yield
        finally:
            await app.state.bridge.stop()

    app = FastAPI(title="Frigate WhatsApp Bridge", version=APP_VERSION, lifespan=lifespan)
    app.state.bridge = state

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["http://localhost:5173", "http://127.0.0.1:5173"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(routes_health.router, prefix="/api")
    app.include_router(routes_state.router, prefix="/api")
    app.include_router(routes_whatsapp.router, prefix="/api")
    app.include_router(routes_cameras.router, prefix="/api")
    app.include_router(routes_settings.router, prefix="/api")
    app.include_router(routes_ws.router)

    return app
