"""
TillPoint Bridge — Session Lifecycle
Owns the bridge's view of the single WhatsApp session:

    cached state      INITIALIZING ──qr──► INITIALIZING
                           │                    │
                         ready               ready
                           ▼                    ▼
                       CONNECTED ◄─────────────┘
                           │
              disconnected / auth_failure
                           ▼
                      DISCONNECTED

plus two guards:
  - initializing: at most one ``initialize`` in flight
  - restarting:   at most one logout/restart teardown in flight

Client events are queued and applied by a single consumer task, so every
transition happens through ``handle_event`` in emission order.
"""

import asyncio
import io
import logging
from dataclasses import dataclass
from functools import partial
from typing import Any, Coroutine

from tillpoint_bridge.core.config import Settings
from tillpoint_bridge.models.enums import ClientEvent, ConnectionState
from tillpoint_bridge.services.messaging_client import BaseMessagingClient
from tillpoint_bridge.services.webhook_notifier import WebhookNotifier

logger = logging.getLogger(__name__)

RESTART_IN_PROGRESS = "Restart already in progress."


@dataclass(frozen=True)
class LifecycleResult:
    """Outcome of a logout/restart request."""

    accepted: bool
    message: str


class SessionLifecycle:
    """Connection state cache, initialization guard and restart/logout coordinator."""

    def __init__(
        self,
        client: BaseMessagingClient,
        notifier: WebhookNotifier,
        settings: Settings,
    ):
        self.client = client
        self.notifier = notifier
        self.settings = settings

        self.state: str = ConnectionState.INITIALIZING
        self.initializing = False
        self.restarting = False

        self._events: asyncio.Queue[tuple[ClientEvent, Any]] = asyncio.Queue()
        self._consumer: asyncio.Task | None = None
        self._tasks: set[asyncio.Task] = set()

        self._event_handlers = {
            ClientEvent.QR: self._on_qr,
            ClientEvent.READY: self._on_ready,
            ClientEvent.AUTHENTICATED: self._on_authenticated,
            ClientEvent.AUTH_FAILURE: self._on_auth_failure,
            ClientEvent.DISCONNECTED: self._on_disconnected,
            ClientEvent.MESSAGE: self._on_message,
        }
        for event in self._event_handlers:
            client.on(event, partial(self.dispatch, event))

    # ── Startup / Shutdown ───────────────────────────────────────────────

    def start(self) -> None:
        """Start the event consumer and bring the session up in the background."""
        self._consumer = asyncio.create_task(self._consume())
        self._spawn(self.safe_initialize("startup"))

    async def stop(self) -> None:
        """Cancel pending work, close the client and flush webhooks."""
        pending = list(self._tasks)
        if self._consumer:
            pending.append(self._consumer)
        for task in pending:
            task.cancel()
        await asyncio.gather(*pending, return_exceptions=True)

        try:
            await self.client.destroy()
        except Exception as exc:
            logger.warning("Client destroy on shutdown failed: %s", exc)
        await self.notifier.aclose()

    def _spawn(self, coro: Coroutine[Any, Any, Any]) -> asyncio.Task:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    # ── State ────────────────────────────────────────────────────────────

    def _set_state(self, state: str) -> None:
        if state != self.state:
            logger.debug("State %s -> %s", self.state, state)
        self.state = state

    async def refresh_state(self) -> str | None:
        """
        Live-query the client and cache the answer.
        An empty answer leaves the cached value untouched.
        """
        live = await self.client.get_state()
        if live:
            self._set_state(live)
        return live

    async def state_for_send(self) -> str | None:
        """Cached state when already CONNECTED, otherwise a live refresh."""
        if self.state == ConnectionState.CONNECTED:
            return self.state
        return await self.refresh_state()

    # ── Initialization Guard ─────────────────────────────────────────────

    async def safe_initialize(self, reason: str = "") -> bool:
        """
        Start the client unless an initialize is already in flight.
        Returns True when this call started one.
        """
        if not self._claim_initialize(reason):
            return False
        await self._run_initialize()
        return True

    def _claim_initialize(self, reason: str) -> bool:
        if self.initializing:
            logger.info("Initialize skipped (already initializing)")
            return False

        self.initializing = True
        self._set_state(ConnectionState.INITIALIZING)
        logger.info("Initializing WhatsApp client%s...", f": {reason}" if reason else "")
        return True

    async def _run_initialize(self) -> None:
        try:
            await self.client.initialize()
        except Exception as exc:
            logger.error("Client initialize threw error: %s", exc)
            self.initializing = False

    # ── Restart / Logout Coordinator ─────────────────────────────────────

    async def logout(self) -> LifecycleResult:
        """
        Log out and re-initialize to get a fresh QR code.
        Falls back to destroy when logout fails; raises the logout
        error when both fail.
        """
        if self.restarting:
            return LifecycleResult(accepted=False, message=RESTART_IN_PROGRESS)
        self.restarting = True

        delay = self.settings.LOGOUT_REINIT_DELAY
        try:
            logger.info("Logging out and destroying session...")
            await self.client.logout()
        except Exception as exc:
            logger.error("Logout error: %s", exc)
            try:
                await self.client.destroy()
            except Exception as destroy_exc:
                logger.error("Destroy after failed logout also failed: %s", destroy_exc)
                self.restarting = False
                raise exc
            self._schedule_reinitialize(delay, "logout_destroy")
            return LifecycleResult(
                accepted=True,
                message="Session destroyed. New QR code will be generated.",
            )

        logger.info("Logged out, reinitializing...")
        self._schedule_reinitialize(delay, "logout")
        return LifecycleResult(accepted=True, message="Logged out. New QR code will be generated.")

    async def restart(self) -> LifecycleResult:
        """Destroy the client and re-initialize it after a settle delay."""
        if self.restarting:
            return LifecycleResult(accepted=False, message=RESTART_IN_PROGRESS)
        self.restarting = True

        try:
            logger.info("Force restarting WhatsApp client...")
            await self.client.destroy()
        except Exception as exc:
            logger.error("Restart error: %s", exc)
            self.restarting = False
            raise

        logger.info("Client destroyed, waiting before reinitialize...")
        self._schedule_reinitialize(self.settings.RESTART_REINIT_DELAY, "restart")
        return LifecycleResult(
            accepted=True,
            message="Client restarting. New QR code will appear in logs.",
        )

    def _schedule_reinitialize(self, delay: float, reason: str) -> asyncio.Task:
        return self._spawn(self._reinitialize_later(delay, reason))

    async def _reinitialize_later(self, delay: float, reason: str) -> None:
        # Teardown finishes asynchronously inside the client
        try:
            await asyncio.sleep(delay)
            claimed = self._claim_initialize(reason)
        finally:
            # Released before the browser bring-up
            self.restarting = False
        if claimed:
            await self._run_initialize()

    # ── Client Events ────────────────────────────────────────────────────

    def dispatch(self, event: ClientEvent, payload: Any = None) -> None:
        """Queue a client event for the consumer task."""
        self._events.put_nowait((event, payload))

    async def drain(self) -> None:
        """Wait until every queued event has been applied."""
        await self._events.join()

    async def _consume(self) -> None:
        while True:
            event, payload = await self._events.get()
            try:
                self.handle_event(event, payload)
            except Exception:
                logger.exception("Failed to apply client event '%s'", event)
            finally:
                self._events.task_done()

    def handle_event(self, event: ClientEvent, payload: Any = None) -> None:
        """Apply one client event to the cached state and guards."""
        self._event_handlers[ClientEvent(event)](payload)

    def _on_qr(self, qr: str) -> None:
        logger.info("QR RECEIVED")
        self._set_state(ConnectionState.INITIALIZING)
        self.initializing = False

        if self.settings.LOG_QR_TERMINAL:
            self._log_qr(qr)

        # Raw pairing string only; rendering is the receiver's job
        self.notifier.notify(ClientEvent.QR, qr)

    def _on_ready(self, _: Any = None) -> None:
        logger.info("Client is ready!")
        self._set_state(ConnectionState.CONNECTED)
        self.initializing = False
        info = self.client.info
        connected_user = info.wid_user if info else None
        self.notifier.notify(ClientEvent.READY, {"me": {"user": connected_user}})

    def _on_authenticated(self, _: Any = None) -> None:
        logger.info("Client authenticated")
        self.initializing = False

    def _on_auth_failure(self, message: Any) -> None:
        logger.error("AUTHENTICATION FAILURE %s", message)
        self._set_state(ConnectionState.DISCONNECTED)
        self.initializing = False
        self.notifier.notify(ClientEvent.AUTH_FAILURE, message)

    def _on_disconnected(self, reason: Any) -> None:
        logger.info("Client was disconnected %s", reason)
        self._set_state(ConnectionState.DISCONNECTED)
        self.initializing = False
        self.notifier.notify(ClientEvent.DISCONNECTED, reason)

    def _on_message(self, message: Any) -> None:
        if not self.settings.RELAY_INBOUND_MESSAGES:
            return
        self.notifier.notify(ClientEvent.MESSAGE, message)

    @staticmethod
    def _log_qr(qr: str) -> None:
        import qrcode

        code = qrcode.QRCode(border=1)
        code.add_data(qr)
        code.make(fit=True)
        out = io.StringIO()
        code.print_ascii(out=out, invert=True)
        logger.info("Scan to link this device:\n%s", out.getvalue())
