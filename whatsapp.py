import re
import os
import asyncio
import collections
import logging
import datetime
from typing import AsyncIterator, Awaitable, Callable, Protocol

from playwright.async_api import async_playwright, Page, TimeoutError, Error as PlaywrightError

from events import Event, MessageEvent
from state import PairingArtifact

logger = logging.getLogger(__name__)

WHATSAPP_URL = "https://web.whatsapp.com/"

LAUNCH_ARGS = ['--no-sandbox', '--disable-setuid-sandbox', '--disable-blink-features=AutomationControlled']
USER_AGENT = "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"

# --- SELECTORS (русский и английский интерфейс) ---
SEARCH_BOX_SELECTOR = 'div[aria-placeholder="Поиск или новый чат"], div[aria-placeholder="Search or start a new chat"]'
QR_CANVAS_SELECTOR = 'canvas[aria-label="Scan this QR code to link a device!"], div[data-ref] canvas'
QR_REF_SELECTOR = 'div[data-ref]'
QR_RELOAD_SELECTOR = 'button:has-text("Click to reload QR code"), button:has-text("Нажмите, чтобы обновить QR-код")'
MSG_BOX_SELECTOR = 'div[aria-placeholder="Введите сообщение"], div[aria-placeholder="Type a message"]'
SEND_BUTTON_SELECTOR = '[aria-label="Отправить"], [aria-label="Send"]'
OPEN_CHAT_SELECTOR = '#main'
UNREAD_BADGE_SELECTOR = 'span[aria-label*="непрочитанн"], span[aria-label*="unread message"]'
UNREAD_CHAT_SELECTOR = (
    'div[role="listitem"]:has(span[aria-label*="непрочитанн"]), '
    'div[role="listitem"]:has(span[aria-label*="unread message"])'
)

# Входящие сообщения открытого чата: id, служебная строка "[время, дата] Автор: ", текст, цитата
READ_INCOMING_JS = """
() => Array.from(document.querySelectorAll('#main div[data-id]'))
    .filter(row => row.querySelector('.message-in'))
    .map(row => {
        const meta = row.querySelector('[data-pre-plain-text]');
        const text = row.querySelector('span.selectable-text');
        const quoted = row.querySelector('[aria-label="Quoted message"], [aria-label="Цитируемое сообщение"]');
        return {
            id: row.getAttribute('data-id') || '',
            meta: meta ? meta.getAttribute('data-pre-plain-text') : '',
            text: text ? text.innerText : '',
            quoted: !!quoted,
        };
    })
"""

# Сколько id входящих сообщений помнить для отсева повторов
SEEN_IDS_LIMIT = 5000

AUTHOR_RE = re.compile(r"^\[[^\]]*\]\s*(.*?):\s*$")

EventHandler = Callable[[Event], Awaitable[object]]


class WhatsAppError(Exception):
    """Базовая ошибка сессии WhatsApp Web."""


class ConnectError(WhatsAppError):
    pass


class SendError(WhatsAppError):
    pass


class PairingError(WhatsAppError):
    pass


class SessionHandle(Protocol):
    device_id: str | None

    async def connect(self) -> None: ...

    async def disconnect(self) -> None: ...

    async def is_logged_in(self) -> bool: ...

    def add_event_handler(self, handler: EventHandler) -> None: ...

    def pairing_artifacts(self) -> AsyncIterator[PairingArtifact]: ...

    async def send_message(self, recipient: str, text: str) -> None: ...


async def take_screenshot(page: Page, name: str):
    if not page or page.is_closed():
        logger.warning(f"Не удалось сделать скриншот '{name}': страница закрыта.")
        return
    try:
        screenshots_dir = "debug_screenshots"
        os.makedirs(screenshots_dir, exist_ok=True)
        timestamp = datetime.datetime.now().strftime("%Y%m%d_%H%M%S")
        safe_name = "".join(c for c in name if c.isalnum() or c in ('_', '-')).rstrip()
        path = os.path.join(screenshots_dir, f"{safe_name}_{timestamp}.png")
        await page.screenshot(path=path)
        logger.info(f"Скриншот для отладки сохранен: {path}")
    except Exception as e:
        logger.error(f"Не удалось сохранить скриншот '{name}': {e}")


def parse_author(meta: str) -> str:
    match = AUTHOR_RE.match(meta or "")
    return match.group(1).strip() if match else ""


def row_to_event(row: dict, chat_name: str) -> MessageEvent:
    """Превращает строку, прочитанную READ_INCOMING_JS, в MessageEvent.

    id групповых сообщений содержат jid вида ``@g.us``. В личном чате по
    названию чата его и можно найти через поиск, поэтому оно же и отправитель.
    """
    message_id = row.get("id", "")
    is_group = "@g.us" in message_id
    sender = parse_author(row.get("meta", "")) if is_group else chat_name
    text = row.get("text", "") or ""
    if row.get("quoted"):
        conversation, extended_text = "", text
    else:
        conversation, extended_text = text, ""
    return MessageEvent(
        sender=sender or chat_name,
        chat=chat_name,
        is_group=is_group,
        conversation=conversation,
        extended_text=extended_text,
        message_id=message_id,
    )


def parse_unread_count(label: str) -> int:
    match = re.search(r"\d+", label or "")
    return int(match.group()) if match else 1


class DeviceStore:
    """Сохраненная сессия WhatsApp Web (storage state Playwright) в одном файле."""

    def __init__(self, path: str):
        self.path = path

    def load(self) -> str | None:
        if os.path.exists(self.path):
            logger.info(f"Используется файл сессии: {self.path}")
            return self.path
        logger.info("Файл сессии не найден, будет создано новое устройство...")
        return None

    async def save(self, pw_context) -> None:
        # Ключи WhatsApp Web лежат в IndexedDB, без него сессия не восстановится
        await pw_context.storage_state(path=self.path, indexed_db=True)
        logger.info(f"Состояние сессии сохранено: {self.path}")


class WhatsAppWebSession:
    def __init__(self, store: DeviceStore, headless: bool = True, poll_interval: float = 2.0,
                 screenshots: bool = False):
        self.store = store
        self.headless = headless
        self.poll_interval = poll_interval
        self.screenshots = screenshots
        self.device_id: str | None = None

        self._handlers: list[EventHandler] = []
        self._playwright = None
        self._browser = None
        self._context = None
        self._page: Page | None = None
        self._page_lock = asyncio.Lock()
        self._logged_in = False
        self._watcher: asyncio.Task | None = None
        self._tasks: set[asyncio.Task] = set()
        self._seen_ids: set[str] = set()
        self._seen_order: collections.deque[str] = collections.deque()
        self._open_chat: str | None = None
        # Паузы для анимаций интерфейса
        self.ui_delay = 0.5
        self.qr_poll_interval = 1.0

    def add_event_handler(self, handler: EventHandler) -> None:
        self._handlers.append(handler)

    async def _debug_screenshot(self, name: str):
        if self.screenshots:
            await take_screenshot(self._page, name)

    # --- CONNECTION ---

    async def connect(self) -> None:
        storage_state = self.store.load()
        logger.info("Запуск нового экземпляра Playwright...")
        try:
            self._playwright = await async_playwright().start()
            self._browser = await self._playwright.chromium.launch(headless=self.headless, args=LAUNCH_ARGS)
            self._context = await self._browser.new_context(storage_state=storage_state, user_agent=USER_AGENT)
            self._page = await self._context.new_page()

            await self._page.goto(WHATSAPP_URL, timeout=30000)
            # Ждем либо QR-код, либо список чатов
            await self._page.wait_for_selector(f"{QR_CANVAS_SELECTOR}, {SEARCH_BOX_SELECTOR}", timeout=60000)
        except PlaywrightError as e:
            await self._debug_screenshot("connect_error")
            await self._close_browser()
            raise ConnectError(f"Не удалось открыть WhatsApp Web: {e}") from e

        await self._debug_screenshot("connect_done")
        self._watcher = asyncio.create_task(self._watch_inbox())

    async def disconnect(self) -> None:
        if self._watcher:
            self._watcher.cancel()
            try:
                await self._watcher
            except asyncio.CancelledError:
                pass
            self._watcher = None

        if self._context and self._logged_in:
            try:
                await self.store.save(self._context)
            except PlaywrightError as e:
                logger.error(f"Не удалось сохранить сессию при отключении: {e}")

        await self._close_browser()
        logger.info("Сессия WhatsApp закрыта.")

    async def _close_browser(self) -> None:
        try:
            if self._browser and self._browser.is_connected():
                await self._browser.close()
            if self._playwright:
                await self._playwright.stop()
        except PlaywrightError as e:
            logger.error(f"Ошибка при закрытии браузера: {e}")
        finally:
            self._browser = None
            self._context = None
            self._page = None
            self._playwright = None

    # --- LOGIN ---

    async def is_logged_in(self) -> bool:
        if not self._page or self._page.is_closed():
            return False
        try:
            await self._page.wait_for_selector(SEARCH_BOX_SELECTOR, timeout=5000)
        except TimeoutError:
            logger.info("Сессия WhatsApp неактивна или не успела загрузиться.")
            return False

        if not self._logged_in:
            self._logged_in = True
            self.device_id = await self._read_device_id()
        logger.info("Сессия WhatsApp активна.")
        return True

    async def _read_device_id(self) -> str | None:
        try:
            wid = await self._page.evaluate("() => localStorage.getItem('last-wid-md')")
        except PlaywrightError:
            return None
        return wid.strip('"') if wid else None

    async def _chat_list_visible(self) -> bool:
        return await self._page.locator(SEARCH_BOX_SELECTOR).count() > 0

    async def pairing_artifacts(self) -> AsyncIterator[PairingArtifact]:
        """Выдает каждый новый QR-код, пока не появится список чатов.

        Если QR-код пропал, а список чатов так и не появился за минуту,
        поток завершается без входа.
        """
        if not self._page:
            raise PairingError("Сессия не подключена")

        last_code = None
        while True:
            if await self._chat_list_visible():
                await self._on_paired()
                return

            ref = self._page.locator(QR_REF_SELECTOR)
            if await ref.count() == 0:
                reload_button = self._page.locator(QR_RELOAD_SELECTOR)
                if await reload_button.count() > 0:
                    logger.info("QR-код устарел, запрашиваем новый.")
                    await reload_button.first.click()
                    await asyncio.sleep(self.qr_poll_interval)
                    continue

                # QR пропал: либо идет загрузка чатов после сканирования, либо вход не удался
                try:
                    await self._page.wait_for_selector(SEARCH_BOX_SELECTOR, timeout=60000)
                except TimeoutError:
                    await self._debug_screenshot("login_timeout")
                    logger.warning("QR-код исчез, но список чатов не появился.")
                    return
                await self._on_paired()
                return

            code = await ref.first.get_attribute("data-ref")
            if code and code != last_code:
                last_code = code
                try:
                    png = await self._page.locator(QR_CANVAS_SELECTOR).first.screenshot()
                except PlaywrightError as e:
                    logger.error(f"Ошибка генерации QR-кода: {e}")
                    continue
                logger.info("Получен QR-код")
                yield PairingArtifact(code=code, png=png)

            await asyncio.sleep(self.qr_poll_interval)

    async def _on_paired(self) -> None:
        await self._debug_screenshot("login_success")
        self._logged_in = True
        self.device_id = await self._read_device_id()
        try:
            await self.store.save(self._context)
        except PlaywrightError as e:
            logger.error(f"Не удалось сохранить сессию: {e}")

    # --- INCOMING MESSAGES ---

    def _emit(self, event: Event) -> None:
        for handler in self._handlers:
            task = asyncio.create_task(handler(event))
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)

    async def _watch_inbox(self) -> None:
        while True:
            if self._logged_in:
                try:
                    for event in await self._poll_unread():
                        self._emit(event)
                except PlaywrightError as e:
                    logger.error(f"Ошибка при чтении входящих: {e}")
            await asyncio.sleep(self.poll_interval)

    def _remember(self, message_id: str) -> None:
        self._seen_ids.add(message_id)
        self._seen_order.append(message_id)
        while len(self._seen_order) > SEEN_IDS_LIMIT:
            self._seen_ids.discard(self._seen_order.popleft())

    async def _read_chat(self, chat_name: str, fresh: int | None = None) -> list[MessageEvent]:
        """Читает входящие строки открытого чата.

        Новыми считаются только последние ``fresh`` строк (None - все еще не
        виденные), остальные просто запоминаются.
        """
        rows = await self._page.evaluate(READ_INCOMING_JS)
        fresh_from = len(rows) - fresh if fresh is not None else 0
        events = []
        for position, row in enumerate(rows):
            row_id = row.get("id")
            if not row_id or row_id in self._seen_ids:
                continue
            self._remember(row_id)
            if position >= fresh_from:
                events.append(row_to_event(row, chat_name))
        return events

    async def _close_chat(self) -> None:
        # Открытый чат WhatsApp Web сразу помечает прочитанным, значка непрочитанных не будет
        try:
            await self._page.keyboard.press("Escape")
        except PlaywrightError as e:
            logger.error(f"Не удалось закрыть чат: {e}")

    async def _poll_unread(self) -> list[MessageEvent]:
        events = []
        async with self._page_lock:
            # Сообщения, пришедшие в чат, который так и остался открытым
            if self._open_chat and await self._page.locator(OPEN_CHAT_SELECTOR).count() > 0:
                events.extend(await self._read_chat(self._open_chat))

            chats = self._page.locator(UNREAD_CHAT_SELECTOR)
            opened = False
            for _ in range(await chats.count()):
                # Открытый чат теряет значок, поэтому следующий снова первый в списке
                chat = chats.first
                chat_name = await chat.locator('span[title]').first.get_attribute("title") or ""
                badge_label = await chat.locator(UNREAD_BADGE_SELECTOR).first.get_attribute("aria-label")
                unread = parse_unread_count(badge_label)

                await chat.click()
                opened = True
                self._open_chat = chat_name
                await asyncio.sleep(self.ui_delay)
                events.extend(await self._read_chat(chat_name, fresh=unread))

            if opened:
                await self._close_chat()
        return events

    # --- SENDING ---

    async def _find_and_click_chat(self, chat_name: str) -> bool:
        search_box = self._page.locator(SEARCH_BOX_SELECTOR)
        try:
            logger.info(f"Поиск чата: '{chat_name}'")
            await search_box.fill(chat_name)
            await asyncio.sleep(self.ui_delay)

            chat_title = self._page.get_by_title(chat_name, exact=True)
            await chat_title.first.wait_for(timeout=5000)

            chat_container = self._page.locator('div[role="listitem"]').filter(has=chat_title)
            await chat_container.first.click()
            self._open_chat = chat_name
            logger.info(f"Чат '{chat_name}' найден и открыт.")
            await asyncio.sleep(self.ui_delay)
            return True
        except TimeoutError:
            logger.warning(f"Чат '{chat_name}' не найден после поиска.")
            return False
        finally:
            await search_box.fill("")

    async def send_message(self, recipient: str, text: str) -> None:
        if not self._page or not self._logged_in:
            raise SendError("Вы не вошли в WhatsApp")

        async with self._page_lock:
            try:
                if not await self._find_and_click_chat(recipient):
                    raise SendError(f"Чат с именем '{recipient}' не найден")
                # Старые сообщения этого чата не должны попасть во входящие
                await self._read_chat(recipient, fresh=0)
                await self._page.locator(MSG_BOX_SELECTOR).fill(text)
                await self._page.locator(SEND_BUTTON_SELECTOR).first.click()
            except PlaywrightError as e:
                await self._debug_screenshot("send_universal_error")
                raise SendError(f"Не удалось отправить: {e}") from e
            finally:
                await self._close_chat()
