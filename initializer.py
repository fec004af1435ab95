import os
import asyncio
import logging
from typing import Callable

from config import Settings
from dispatcher import ReplyDispatcher
from state import BotState
from whatsapp import DeviceStore, SessionHandle, WhatsAppWebSession

logger = logging.getLogger(__name__)

SessionFactory = Callable[[DeviceStore, Settings], SessionHandle]


def default_session_factory(store: DeviceStore, settings: Settings) -> SessionHandle:
    return WhatsAppWebSession(
        store,
        headless=settings.headless,
        poll_interval=settings.poll_interval,
        screenshots=settings.debug_screenshots,
    )


class SessionInitializer:
    """Доводит сессию WhatsApp от нуля до готовности.

    Любая ошибка мягкая: она пишется в лог, ``run()`` возвращает False и
    клиент остается в состоянии "initializing" до конца работы процесса.
    Повторных попыток нет.
    """

    def __init__(self, state: BotState, settings: Settings,
                 session_factory: SessionFactory = default_session_factory):
        self.state = state
        self.settings = settings
        self.session_factory = session_factory

    async def run(self) -> bool:
        try:
            os.makedirs(self.settings.data_dir, exist_ok=True)
        except OSError as e:
            logger.error(f"Ошибка создания каталога данных {self.settings.data_dir}: {e}")
            return False

        logger.info(f"Используется файл сессии: {self.settings.session_path}")
        store = DeviceStore(self.settings.session_path)
        try:
            session = self.session_factory(store, self.settings)
        except Exception as e:
            logger.error(f"Ошибка открытия хранилища сессии: {e}")
            return False
        self.state.session = session

        # Обработчик регистрируется до подключения, чтобы не потерять события
        dispatcher = ReplyDispatcher(session)
        session.add_event_handler(dispatcher.handle)

        try:
            await session.connect()
        except Exception as e:
            logger.error(f"Ошибка подключения к WhatsApp: {e}")
            return False

        if not await session.is_logged_in():
            logger.info("Вход не выполнен, отсканируйте QR-код")
            if not await self._wait_for_pairing(session):
                return False
            # Поток QR-кодов мог закончиться без входа
            if not await session.is_logged_in():
                logger.error("Поток QR-кодов завершился, но вход не выполнен")
                self.state.pairing.clear()
                return False
        else:
            logger.info(f"Вход выполнен как {session.device_id}")

        self.state.pairing.clear()
        self.state.device_id = session.device_id
        self.state.mark_client_ready()
        logger.info("Инициализация клиента WhatsApp завершена")
        return True

    async def _wait_for_pairing(self, session: SessionHandle) -> bool:
        try:
            async with asyncio.timeout(self.settings.pairing_timeout):
                async for artifact in session.pairing_artifacts():
                    await self.state.pairing.publish(artifact)
        except TimeoutError:
            logger.error(f"QR-код не отсканирован за {self.settings.pairing_timeout:.0f} секунд")
            self.state.pairing.clear()
            return False
        except Exception as e:
            logger.error(f"Ошибка при ожидании входа по QR-коду: {e}")
            self.state.pairing.clear()
            return False
        return True
