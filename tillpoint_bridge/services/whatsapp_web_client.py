"""
TillPoint Bridge — WhatsApp Web Client
Drives web.whatsapp.com in a persistent Chromium profile via Playwright.

The profile directory keeps the linked-device credentials, so a restarted
process comes back CONNECTED without a new QR scan.
"""

import asyncio
import re
import shutil
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Any
from urllib.parse import quote

from playwright.async_api import Error as PlaywrightError
from playwright.async_api import async_playwright

from tillpoint_bridge.core.config import Settings
from tillpoint_bridge.models.enums import ClientEvent, ConnectionState
from tillpoint_bridge.services.messaging_client import BaseMessagingClient, ClientInfo, SentMessage

WHATSAPP_WEB_URL = "https://web.whatsapp.com/"

DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)

# The pairing payload lives on the QR container, not in the canvas pixels
QR_CONTAINER = "div[data-ref]"

LOGIN_MARKERS = [
    "#pane-side",
    'div[data-testid="chat-list"]',
    'div[aria-label="Chat list"]',
    'header[data-testid="chatlist-header"]',
]

COMPOSE_SELECTORS = [
    'footer div[contenteditable="true"][role="textbox"]',
    'div[contenteditable="true"][data-tab="10"]',
    '[data-testid="conversation-compose-box-input"]',
]

SEND_SELECTORS = [
    'button[aria-label="Send"]',
    'span[data-icon="send"]',
    '[data-testid="send"]',
]

INVALID_CHAT_POPUP = 'div[data-testid="popup-controls-ok"]'

UNPAIRED = "UNPAIRED"
OPENING = "OPENING"

AUTH_FAILURE_MESSAGE = "Unable to log in. Are the session details valid?"

WATCH_INTERVAL = 1.0
NAVIGATION_TIMEOUT_MS = 60_000
SEND_TIMEOUT_MS = 30_000

CLEAR_STORAGE_JS = """
() => {
  try { localStorage.clear(); } catch (e) {}
  try { sessionStorage.clear(); } catch (e) {}
  if (window.indexedDB && indexedDB.databases) {
    return indexedDB.databases().then(dbs => {
      dbs.forEach(db => { try { indexedDB.deleteDatabase(db.name); } catch (e) {} });
    });
  }
  return null;
}
"""

STORED_WID_JS = """
() => {
  try {
    return localStorage.getItem("last-wid-md") || localStorage.getItem("last-wid");
  } catch (e) {
    return null;
  }
}
"""

_CHAT_ID_RE = re.compile(r"^(\d+)@c\.us$")


def chat_id_to_phone(chat_id: str) -> str:
    """``1234567890@c.us`` -> ``1234567890``. Only individual chats are addressable."""
    match = _CHAT_ID_RE.match(chat_id or "")
    if not match:
        raise ValueError(f"Unsupported chat id: {chat_id}")
    return match.group(1)


def parse_wid_user(raw: str | None) -> str | None:
    """Extract the phone part of a stored wid such as ``"1234567890:12@c.us"``."""
    if not raw:
        return None
    wid = raw.strip().strip('"')
    user = wid.split("@", 1)[0].split(":", 1)[0]
    return user or None


def new_message_id(chat_id: str) -> str:
    return f"true_{chat_id}_{uuid.uuid4().hex[:20].upper()}"


class WhatsAppWebClient(BaseMessagingClient):
    """
    Messaging client backed by a headless WhatsApp Web page.

    Lifecycle events are produced by a watcher task that polls the page:
    - pairing payload shown or rotated       -> qr
    - chat list visible                      -> authenticated, ready
    - QR shown although a session was stored -> auth_failure
    - QR shown after ready / page closed     -> disconnected (client shuts down)

    Page operations are serialized with a lock since navigation for one
    send would break a concurrent one.
    """

    service_name = "WhatsAppWeb"
    retry_on = (PlaywrightError,)

    def __init__(self, settings: Settings | None = None):
        super().__init__(settings)
        self.profile_dir = Path(self.settings.SESSION_DATA_DIR) / "session"
        self._playwright: Any = None
        self._context: Any = None
        self._page: Any = None
        self._watcher: asyncio.Task | None = None
        self._page_lock = asyncio.Lock()
        self._closing = False

    # ── Lifecycle ────────────────────────────────────────────────────────

    async def initialize(self) -> None:
        """Launch the browser, open WhatsApp Web and start watching it."""
        if self._context is not None:
            raise RuntimeError("WhatsApp Web client is already running")

        self._closing = False
        self.info = None
        self.profile_dir.mkdir(parents=True, exist_ok=True)

        self.logger.info("📱 Launching Chromium (profile=%s)", self.profile_dir)
        self._playwright = await async_playwright().start()
        try:
            self._context = await self._playwright.chromium.launch_persistent_context(
                user_data_dir=str(self.profile_dir),
                headless=self.settings.HEADLESS,
                args=self.settings.BROWSER_ARGS,
                user_agent=DEFAULT_USER_AGENT,
                viewport={"width": 1280, "height": 900},
            )
            pages = self._context.pages
            self._page = pages[0] if pages else await self._context.new_page()
            await self._execute_with_retry(
                self._page.goto,
                WHATSAPP_WEB_URL,
                wait_until="domcontentloaded",
                timeout=NAVIGATION_TIMEOUT_MS,
            )
            had_session = parse_wid_user(await self._page.evaluate(STORED_WID_JS)) is not None
        except Exception:
            await self._shutdown()
            raise

        self._watcher = asyncio.create_task(self._watch(had_session))

    async def destroy(self) -> None:
        await self._shutdown()

    async def logout(self) -> None:
        """Unlink this device: wipe browser storage, close, drop the profile."""
        if self._page is None or self._page.is_closed():
            raise RuntimeError("WhatsApp Web client is not running")

        async with self._page_lock:
            await self._page.context.clear_cookies()
            await self._page.evaluate(CLEAR_STORAGE_JS)
        await self._shutdown()
        shutil.rmtree(self.profile_dir, ignore_errors=True)
        self.logger.info("📱 Session profile removed")

    async def _shutdown(self) -> None:
        self._closing = True
        watcher, self._watcher = self._watcher, None
        if watcher is not None and watcher is not asyncio.current_task():
            watcher.cancel()
            await asyncio.gather(watcher, return_exceptions=True)

        if self._context is not None:
            try:
                await self._context.close()
            except PlaywrightError as exc:
                self.logger.debug("Browser context already closed: %s", exc)
        if self._playwright is not None:
            await self._playwright.stop()

        self._context = None
        self._page = None
        self._playwright = None
        self.info = None

    # ── Watcher ──────────────────────────────────────────────────────────

    async def _watch(self, had_session: bool) -> None:
        last_qr: str | None = None
        ready = False

        while not self._closing:
            if self._page is None or self._page.is_closed():
                await self._lost("BROWSER_CLOSED")
                return

            try:
                async with self._page_lock:
                    state = await self._read_state()
                    qr = await self._read_qr() if state == UNPAIRED else None
            except PlaywrightError as exc:
                # Navigation in progress or page gone; the next tick decides
                self.logger.debug("Watcher tick failed: %s", exc)
                await asyncio.sleep(WATCH_INTERVAL)
                continue

            if state == ConnectionState.CONNECTED and not ready:
                ready = True
                last_qr = None
                await self._emit(ClientEvent.AUTHENTICATED)
                try:
                    async with self._page_lock:
                        raw_wid = await self._page.evaluate(STORED_WID_JS)
                except PlaywrightError:
                    raw_wid = None
                self.info = ClientInfo(wid_user=parse_wid_user(raw_wid))
                await self._emit(ClientEvent.READY)

            elif state == UNPAIRED:
                if ready:
                    await self._lost("LOGOUT")
                    return
                if had_session:
                    had_session = False
                    await self._emit(ClientEvent.AUTH_FAILURE, AUTH_FAILURE_MESSAGE)
                if qr and qr != last_qr:
                    last_qr = qr
                    await self._emit(ClientEvent.QR, qr)

            await asyncio.sleep(WATCH_INTERVAL)

    async def _lost(self, reason: str) -> None:
        self.logger.warning("📱 WhatsApp Web session lost: %s", reason)
        await self._shutdown()
        await self._emit(ClientEvent.DISCONNECTED, reason)

    async def _read_state(self) -> str:
        for marker in LOGIN_MARKERS:
            if await self._page.locator(marker).count() > 0:
                return ConnectionState.CONNECTED
        if await self._page.locator(QR_CONTAINER).count() > 0:
            return UNPAIRED
        return OPENING

    async def _read_qr(self) -> str | None:
        return await self._page.locator(QR_CONTAINER).first.get_attribute("data-ref")

    # ── Queries / Messaging ──────────────────────────────────────────────

    async def get_state(self) -> str | None:
        if self._page is None or self._page.is_closed():
            return None
        async with self._page_lock:
            return await self._read_state()

    async def send_message(self, chat_id: str, content: Any, *, send_seen: bool = False) -> SentMessage:
        """
        Send a text message to an individual chat.

        WhatsApp Web has to open the chat to send, so ``send_seen`` is
        accepted for interface parity only.
        """
        phone = chat_id_to_phone(chat_id)
        if self._page is None or self._page.is_closed():
            raise RuntimeError("WhatsApp Web client is not running")

        text = content if isinstance(content, str) else str(content)
        url = f"{WHATSAPP_WEB_URL}send?phone={phone}&text={quote(text, safe='')}"

        async with self._page_lock:
            await self._page.goto(url, wait_until="domcontentloaded", timeout=NAVIGATION_TIMEOUT_MS)
            await self._page.wait_for_selector(
                ", ".join([*COMPOSE_SELECTORS, INVALID_CHAT_POPUP]),
                timeout=SEND_TIMEOUT_MS,
            )

            popup = self._page.locator(INVALID_CHAT_POPUP)
            if await popup.count() > 0:
                await popup.first.click()
                raise ValueError(f"Phone number shared via url is invalid: {chat_id}")

            await self._click_send()
            # Let the outgoing message leave before the page is reused
            await self._page.wait_for_timeout(1500)

        return SentMessage(
            id=new_message_id(chat_id),
            chat_id=chat_id,
            timestamp=datetime.now(timezone.utc).isoformat(),
        )

    async def _click_send(self) -> None:
        for selector in SEND_SELECTORS:
            button = self._page.locator(selector)
            if await button.count() > 0:
                await button.first.click()
                return

        for selector in COMPOSE_SELECTORS:
            box = self._page.locator(selector)
            if await box.count() > 0:
                await box.first.press("Enter")
                return

        raise RuntimeError("Send button not found")
