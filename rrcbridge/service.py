from __future__ import annotations

import logging
import signal
import threading
import time
from dataclasses import dataclass
from typing import Callable

from .commands import CommandHandler
from .config import BridgeRuntimeConfig, validate_config
from .models import Conversation, Event
from .providers import Payload, Provider, ProviderError, ProviderRegistry
from .repository import BridgeRepository
from .router import MessageRouter
from .store import DocumentStore
from .trust import AuthManager
from .workers import WorkerPool


@dataclass
class Delivery:
    conversation: Conversation
    payload: Payload


class BridgeService:
    def __init__(
        self,
        config: BridgeRuntimeConfig,
        *,
        store: DocumentStore | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        validate_config(config)
        self.config = config
        self.log = logging.getLogger("rrcbridge.service")
        self._clock = clock

        self._shutdown = threading.Event()
        self._cleanup_thread: threading.Thread | None = None
        self._started = False

        self.store = store if store is not None else DocumentStore(config.store_path)
        self.repository = BridgeRepository(self.store)

        # Admin gate for privileged commands
        self.auth = AuthManager(self)

        # Command dispatch and pairing protocol
        self.commands = CommandHandler(self)

        # Forwarding of ordinary messages
        self.router = MessageRouter(self)

        # Providers publish events onto the inbound pool; replies that must
        # not block a handler (forwards, disconnect notices) go outbound.
        self.inbound = WorkerPool(
            "rrcbridge-events", self.handle_event, int(config.event_workers)
        )
        self.outbound = WorkerPool(
            "rrcbridge-send", self._deliver, int(config.send_workers)
        )
        self.providers = ProviderRegistry(self.inbound.submit)

    def now(self) -> float:
        return float(self._clock())

    def add_provider(self, provider: Provider) -> None:
        self.providers.add(provider)
        self.log.info("Provider added: %s", provider.display_name or provider.name)

    def remove_provider(self, provider: Provider) -> None:
        if self.providers.remove(provider):
            self.log.info("Provider removed: %s", provider.display_name or provider.name)

    def handle_event(self, event: Event) -> None:
        self.log.debug(
            "Event kind=%s provider=%s conversation=%s",
            event.kind,
            event.provider or "-",
            event.message.conversation.provider_id,
        )
        if event.is_command:
            self.commands.handle(event)
        else:
            self.router.route(event.message)

    def send_now(self, conversation: Conversation, payload: Payload) -> None:
        """Send through the conversation's provider, raising on failure."""
        name = conversation.provider_id.provider
        provider = self.providers.get(name)
        if provider is None:
            raise ProviderError(f"no provider registered for {name!r}")
        provider.send(conversation, payload)

    def notify(self, conversation: Conversation, payload: Payload) -> None:
        """Queue a send without waiting for it."""
        self.outbound.submit(Delivery(conversation, payload))

    def _deliver(self, delivery: Delivery) -> None:
        try:
            self.send_now(delivery.conversation, delivery.payload)
        except Exception:
            self.log.warning(
                "Send failed conversation=%s",
                delivery.conversation.provider_id,
                exc_info=True,
            )

    def wait_idle(self) -> None:
        """Block until queued events, and the sends they caused, are done."""
        self.inbound.join()
        self.outbound.join()

    def start(self) -> None:
        if self._started:
            return
        self._started = True
        self._shutdown.clear()

        self.outbound.start()
        self.inbound.start()

        for provider in self.providers.all():
            self.log.info("Starting provider %s", provider.display_name or provider.name)
            try:
                provider.start()
            except Exception as e:
                raise RuntimeError(f"failed to start provider {provider.name!r}: {e}") from e

        if self.config.token_cleanup_interval_s and self.config.token_cleanup_interval_s > 0:
            self._cleanup_thread = threading.Thread(
                target=self._cleanup_loop, name="rrcbridge-token-cleanup", daemon=True
            )
            self._cleanup_thread.start()

        self.log.info(
            "Bridge running providers=%s auth_enabled=%s event_workers=%s send_workers=%s",
            ", ".join(p.name for p in self.providers.all()) or "-",
            self.config.auth_enabled,
            self.config.event_workers,
            self.config.send_workers,
        )

    def cleanup_expired_tokens(self) -> int:
        removed = self.repository.delete_expired_pending(
            self.now(), float(self.config.token_ttl_s)
        )
        if removed:
            self.log.info("Removed %s expired pending connection(s)", removed)
        return removed

    def _cleanup_loop(self) -> None:
        while not self._shutdown.is_set():
            interval = float(self.config.token_cleanup_interval_s)
            if self._shutdown.wait(interval):
                break
            try:
                self.cleanup_expired_tokens()
            except Exception:
                self.log.exception("Token cleanup failed")

    def run_forever(self) -> None:
        if not self._started:
            self.start()

        signal.signal(signal.SIGINT, lambda *_: self._shutdown.set())
        signal.signal(signal.SIGTERM, lambda *_: self._shutdown.set())

        while not self._shutdown.is_set():
            self._shutdown.wait(0.25)

        self.stop()

    def stop(self) -> None:
        self._shutdown.set()
        if not self._started:
            return
        self._started = False

        self.log.info("Graceful shutdown")
        for provider in self.providers.all():
            self.remove_provider(provider)
            try:
                provider.stop()
            except Exception:
                self.log.warning("Provider %s did not stop cleanly", provider.name, exc_info=True)

        # Events still queued may produce sends, so drain inbound first.
        self.inbound.stop()
        self.outbound.stop()
