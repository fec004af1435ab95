"""Tests for the Telegram admin commands"""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from telegram.ext import Application, Updater

from state import BotState, PairingArtifact
from telegram_admin import QR_CAPTION, TelegramAdmin


ADMIN_ID = 42


def _make_update() -> MagicMock:
    update = MagicMock()
    update.message.reply_text = AsyncMock()
    update.message.reply_photo = AsyncMock()
    return update


def _make_admin(state: BotState) -> TelegramAdmin:
    return TelegramAdmin(state, "123456:TEST-TOKEN", ADMIN_ID)


@pytest.mark.asyncio
async def test_subscribes_to_new_qr_codes_after_start():
    state = BotState()
    admin = _make_admin(state)
    assert state.pairing._subscribers == []

    with patch.object(Application, "initialize", new=AsyncMock()), \
            patch.object(Application, "start", new=AsyncMock()), \
            patch.object(Updater, "start_polling", new=AsyncMock()):
        await admin.start()

    assert admin.notify_qr in state.pairing._subscribers


@pytest.mark.asyncio
async def test_failed_start_does_not_subscribe():
    state = BotState()
    admin = _make_admin(state)

    with patch.object(Application, "initialize", new=AsyncMock(side_effect=RuntimeError("network down"))):
        with pytest.raises(RuntimeError):
            await admin.start()

    assert state.pairing._subscribers == []


@pytest.mark.asyncio
async def test_status_command_reports_initializing():
    state = BotState()
    update = _make_update()

    await _make_admin(state).status_command(update, MagicMock())
    text = update.message.reply_text.await_args.args[0]
    assert "initializing" in text


@pytest.mark.asyncio
async def test_status_command_reports_device():
    state = BotState()
    state.device_id = "79001234567:1@c.us"
    state.mark_client_ready()
    update = _make_update()

    await _make_admin(state).status_command(update, MagicMock())
    text = update.message.reply_text.await_args.args[0]
    assert "connected" in text
    assert "79001234567:1@c.us" in text


@pytest.mark.asyncio
async def test_qr_command_without_code():
    update = _make_update()
    await _make_admin(BotState()).qr_command(update, MagicMock())

    update.message.reply_text.assert_awaited_once()
    update.message.reply_photo.assert_not_awaited()


@pytest.mark.asyncio
async def test_qr_command_sends_latest_photo():
    state = BotState()
    admin = _make_admin(state)
    await state.pairing.publish(PairingArtifact(code="qr", png=b"png-bytes"))
    update = _make_update()

    await admin.qr_command(update, MagicMock())
    kwargs = update.message.reply_photo.await_args.kwargs
    assert kwargs["photo"].getvalue() == b"png-bytes"
    assert kwargs["caption"] == QR_CAPTION
