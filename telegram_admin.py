import io
import logging

from telegram import Update
from telegram.error import TelegramError
from telegram.ext import Application, CommandHandler, ContextTypes, filters

from state import BotState, PairingArtifact

logger = logging.getLogger(__name__)

QR_CAPTION = "Отсканируйте QR-код с помощью приложения WhatsApp."


class TelegramAdmin:
    """Telegram-канал владельца бота: QR-коды и статус по запросу.

    Отвечаем только на сообщения от ``admin_id``.
    """

    def __init__(self, state: BotState, token: str, admin_id: int):
        self.state = state
        self.admin_id = admin_id
        self.application = Application.builder().token(token).build()

        admin_only = filters.User(user_id=admin_id)
        self.application.add_handler(CommandHandler("start", self.start_command, filters=admin_only))
        self.application.add_handler(CommandHandler("status", self.status_command, filters=admin_only))
        self.application.add_handler(CommandHandler("qr", self.qr_command, filters=admin_only))

    # --- TELEGRAM COMMAND HANDLERS ---

    async def start_command(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        await update.message.reply_text(
            "👋 **Привет! Я присматриваю за WhatsApp-ботом.**\n\n"
            "`/status` - состояние бота.\n"
            "`/qr` - текущий QR-код для входа, если он нужен.\n\n"
            "Новые QR-коды я пришлю сам.",
            parse_mode='Markdown'
        )

    async def status_command(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        text = self.state.status_text()
        if self.state.device_id:
            text += f"\nУстройство: {self.state.device_id}"
        if self.state.pairing.available:
            text += "\nQR-код доступен: /qr"
        await update.message.reply_text(text)

    async def qr_command(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        artifact = self.state.pairing.latest()
        if artifact is None:
            await update.message.reply_text("QR-код пока недоступен. Попробуйте позже.")
            return
        await update.message.reply_photo(photo=io.BytesIO(artifact.png), caption=QR_CAPTION)

    async def notify_qr(self, artifact: PairingArtifact) -> None:
        try:
            await self.application.bot.send_photo(
                chat_id=self.admin_id,
                photo=io.BytesIO(artifact.png),
                caption=QR_CAPTION
            )
        except TelegramError as e:
            logger.error(f"Не удалось отправить QR-код в Telegram: {e}")

    # --- LIFECYCLE ---

    async def start(self) -> None:
        await self.application.initialize()
        await self.application.start()
        await self.application.updater.start_polling()
        # Подписываемся только когда бот реально запущен
        self.state.pairing.subscribe(self.notify_qr)
        logger.info("Telegram-бот запущен...")

    async def stop(self) -> None:
        if self.application.updater.running:
            await self.application.updater.stop()
        if self.application.running:
            await self.application.stop()
        await self.application.shutdown()
