import base64
import inspect
import logging
import threading
from dataclasses import dataclass
from typing import Any, Callable

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PairingArtifact:
    """Содержимое QR-кода WhatsApp Web и его картинка PNG."""
    code: str
    png: bytes

    def as_base64(self) -> str:
        return base64.b64encode(self.png).decode("ascii")


class PairingPublisher:
    """Хранит последний QR-код, полученный при входе.

    Пишет только инициализатор сессии, HTTP-сервер и Telegram только читают.
    Новый QR-код заменяет предыдущий.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._artifact: PairingArtifact | None = None
        self._subscribers: list[Callable[[PairingArtifact], Any]] = []

    def subscribe(self, callback: Callable[[PairingArtifact], Any]) -> None:
        self._subscribers.append(callback)

    async def publish(self, artifact: PairingArtifact) -> None:
        with self._lock:
            self._artifact = artifact
        logger.info("QR-код доступен по адресу /qr")
        for callback in list(self._subscribers):
            try:
                result = callback(artifact)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.error(f"Ошибка подписчика QR-кода: {e}")

    def latest(self) -> PairingArtifact | None:
        with self._lock:
            return self._artifact

    def clear(self) -> None:
        with self._lock:
            self._artifact = None

    @property
    def available(self) -> bool:
        return self.latest() is not None


class BotState:
    """Общее состояние процесса для HTTP-сервера, инициализатора и Telegram.

    Оба флага готовности меняются только с False на True.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._server_ready = False
        self._client_ready = False
        self.pairing = PairingPublisher()
        self.session = None
        self.device_id: str | None = None

    @property
    def server_ready(self) -> bool:
        with self._lock:
            return self._server_ready

    @property
    def client_ready(self) -> bool:
        with self._lock:
            return self._client_ready

    def mark_server_ready(self) -> None:
        with self._lock:
            self._server_ready = True

    def mark_client_ready(self) -> None:
        with self._lock:
            self._client_ready = True

    def status_text(self) -> str:
        status = "WhatsApp bot is running!"
        if self.client_ready:
            status += " WhatsApp client is connected."
        else:
            status += " WhatsApp client is initializing..."
        return status
