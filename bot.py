import sys
import signal
import asyncio
import logging

from config import Settings, setup_logging
from initializer import SessionInitializer
from state import BotState
from status_server import start_status_server
from telegram_admin import TelegramAdmin

logger = logging.getLogger(__name__)


async def wait_for_shutdown() -> None:
    loop = asyncio.get_running_loop()
    stop = asyncio.Event()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop.set)
    await stop.wait()
    logger.info("Получен сигнал завершения")


async def run(settings: Settings) -> int:
    state = BotState()

    try:
        runner = await start_status_server(state, settings.host, settings.port)
    except OSError as e:
        logger.critical(f"Ошибка HTTP-сервера: {e}")
        return 1
    logger.info("HTTP-сервер готов и слушает порт")

    admin = None
    if settings.telegram_enabled:
        admin = TelegramAdmin(state, settings.telegram_token, settings.admin_id)
        try:
            await admin.start()
        except Exception as e:
            logger.error(f"Не удалось запустить Telegram-бота: {e}")
            admin = None

    init_task = asyncio.create_task(SessionInitializer(state, settings).run())

    await wait_for_shutdown()

    if not init_task.done():
        init_task.cancel()
        try:
            await init_task
        except asyncio.CancelledError:
            pass

    if state.session is not None:
        try:
            await state.session.disconnect()
        except Exception as e:
            logger.error(f"Ошибка при отключении от WhatsApp: {e}")

    if admin:
        await admin.stop()
    await runner.cleanup()
    logger.info("Бот остановлен.")
    return 0


# --- MAIN ---

def main() -> None:
    settings = Settings.from_env()
    setup_logging(settings.log_level)
    sys.exit(asyncio.run(run(settings)))


if __name__ == "__main__":
    main()
