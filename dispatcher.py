import types
import datetime
import logging
from typing import Callable

from events import Event, MessageEvent, OtherEvent, extract_text, reply_target

logger = logging.getLogger(__name__)

DEFAULT_PREFIX = "Anda mengirim: "
INFO_TEXT = "Saya adalah bot WhatsApp sederhana dibuat dengan Python dan Playwright."


# --- REPLY RULES ---
# Точное совпадение с учетом регистра. Значение: строка или функция от текущего времени.
REPLY_RULES: types.MappingProxyType[str, str | Callable[[datetime.datetime], str]] = types.MappingProxyType({
    "Halo": "Hai! Ada yang bisa saya bantu?",
    "Waktu": lambda now: "Waktu saat ini: " + now.strftime("%H:%M:%S"),
    "Tanggal": lambda now: "Tanggal hari ini: " + now.strftime("%Y-%m-%d"),
    "Info": INFO_TEXT,
})


def build_reply(text: str, now: datetime.datetime | None = None) -> str:
    rule = REPLY_RULES.get(text)
    if rule is None:
        return DEFAULT_PREFIX + text
    if callable(rule):
        return rule(now or datetime.datetime.now())
    return rule


class ReplyDispatcher:
    """Одно входящее событие - не больше одного ответа."""

    def __init__(self, session, clock: Callable[[], datetime.datetime] = datetime.datetime.now):
        self.session = session
        self.clock = clock

    async def handle(self, event: Event) -> bool:
        match event:
            case MessageEvent():
                return await self._on_message(event)
            case OtherEvent():
                return False
        return False

    async def _on_message(self, event: MessageEvent) -> bool:
        text = extract_text(event)
        if not text:
            return False

        logger.info(f"Получено сообщение: {text}")
        reply = build_reply(text, self.clock())
        recipient = reply_target(event)
        try:
            await self.session.send_message(recipient, reply)
        except Exception as e:
            logger.error(f"Ошибка при отправке сообщения в '{recipient}': {e}")
            return False

        logger.info(f"Сообщение отправлено: {reply}")
        return True
