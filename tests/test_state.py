"""Tests for readiness flags and the QR pairing publisher"""

import base64
from unittest.mock import AsyncMock, MagicMock

import pytest

from state import BotState, PairingArtifact, PairingPublisher


class TestBotState:
    def test_starts_not_ready(self):
        state = BotState()
        assert state.server_ready is False
        assert state.client_ready is False
        assert "initializing" in state.status_text()

    def test_client_ready_flips_status_once(self):
        state = BotState()
        state.mark_client_ready()
        assert state.client_ready is True
        assert state.status_text() == "WhatsApp bot is running! WhatsApp client is connected."

        # Повторная отметка ничего не меняет
        state.mark_client_ready()
        assert state.client_ready is True

    def test_flags_are_independent(self):
        state = BotState()
        state.mark_server_ready()
        assert state.server_ready is True
        assert state.client_ready is False


class TestPairingPublisher:
    @pytest.mark.asyncio
    async def test_empty_until_published(self):
        publisher = PairingPublisher()
        assert publisher.latest() is None
        assert publisher.available is False

        await publisher.publish(PairingArtifact(code="2@abc", png=b"png-1"))
        assert publisher.available is True
        assert publisher.latest().code == "2@abc"

    @pytest.mark.asyncio
    async def test_second_artifact_replaces_first(self):
        publisher = PairingPublisher()
        await publisher.publish(PairingArtifact(code="first", png=b"png-1"))
        await publisher.publish(PairingArtifact(code="second", png=b"png-2"))

        latest = publisher.latest()
        assert latest.code == "second"
        assert latest.png == b"png-2"

    @pytest.mark.asyncio
    async def test_clear(self):
        publisher = PairingPublisher()
        await publisher.publish(PairingArtifact(code="x", png=b"png"))
        publisher.clear()
        assert publisher.latest() is None

    @pytest.mark.asyncio
    async def test_subscribers_receive_each_artifact(self):
        publisher = PairingPublisher()
        sync_cb = MagicMock()
        async_cb = AsyncMock()
        publisher.subscribe(sync_cb)
        publisher.subscribe(async_cb)

        artifact = PairingArtifact(code="x", png=b"png")
        await publisher.publish(artifact)

        sync_cb.assert_called_once_with(artifact)
        async_cb.assert_awaited_once_with(artifact)

    @pytest.mark.asyncio
    async def test_failing_subscriber_does_not_block_publish(self):
        publisher = PairingPublisher()
        publisher.subscribe(MagicMock(side_effect=RuntimeError("boom")))
        await publisher.publish(PairingArtifact(code="x", png=b"png"))
        assert publisher.latest().code == "x"

    def test_artifact_base64(self):
        artifact = PairingArtifact(code="x", png=b"\x89PNG")
        assert base64.b64decode(artifact.as_base64()) == b"\x89PNG"
