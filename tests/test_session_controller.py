"""
Tests for the session controller.

The transport is replaced by FakeTransport, so these tests exercise the
controller's lifecycle and wiring without WebRTC.
"""

import asyncio
import json
from dataclasses import replace
from unittest.mock import AsyncMock, MagicMock

import pytest

from medinterp.config import RealtimeConfig
from medinterp.core.realtime_api import CredentialError
from medinterp.realtime.conversation import DetectedAction, TurnRole
from medinterp.realtime.protocol import SUMMARY_TOOL
from medinterp.realtime.session_controller import SessionController, build_basic_summary
from medinterp.realtime.tools import ToolDescriptor


@pytest.fixture
def statuses():
    return []


@pytest.fixture
def controller(fake_transport, session_config, statuses):
    return SessionController(
        transport=fake_transport,
        session_config=session_config,
        realtime_config=RealtimeConfig(transcription_model="whisper-1"),
        on_status=statuses.append,
    )


def _sent(fake_transport):
    return [json.loads(raw) for raw in fake_transport.data_channel.sent]


# ============================================================================
# Lifecycle
# ============================================================================

class TestStartStop:
    """Tests for start and stop."""

    @pytest.mark.asyncio
    async def test_start_success(self, controller, fake_transport, statuses):
        assert await controller.start() is True

        assert controller.is_active is True
        assert controller.connection_status == "Session established successfully!"
        assert statuses[-1] == "Session established successfully!"
        assert fake_transport.open_calls == 1
        assert fake_transport.on_status is not None

    @pytest.mark.asyncio
    async def test_start_when_active_is_noop(self, controller, fake_transport):
        await controller.start()
        assert await controller.start() is True
        assert fake_transport.open_calls == 1

    @pytest.mark.asyncio
    async def test_channel_open_configures_session(self, controller, fake_transport):
        controller.register_tool(
            "sendLabOrder",
            AsyncMock(return_value=None),
            ToolDescriptor(name="sendLabOrder", description="Send a lab order"),
        )
        await controller.start()
        fake_transport.open_channel()

        sent = _sent(fake_transport)
        assert [e["type"] for e in sent] == ["session.update", "conversation.item.create"]
        session = sent[0]["session"]
        assert session["input_audio_transcription"] == {"model": "whisper-1"}
        assert [t["name"] for t in session["tools"]] == ["sendLabOrder"]
        assert sent[1]["item"]["content"][0]["text"].startswith("Speak and respond only in English")

    @pytest.mark.asyncio
    async def test_start_failure(self, controller, fake_transport, statuses):
        fake_transport.open_error = CredentialError("Failed to get ephemeral token: 500")

        assert await controller.start() is False
        assert controller.is_active is False
        assert controller.connection_status == "Error: Failed to get ephemeral token: 500"
        assert fake_transport.close_calls == 1

    @pytest.mark.asyncio
    async def test_stop_clears_conversation_keeps_outcomes(self, controller, fake_transport, statuses):
        await controller.start()
        fake_transport.open_channel()
        await controller.protocol.handle_message(
            '{"type": "response.audio_transcript.delta", "delta": "Hola"}'
        )
        controller.protocol.log_action("sendLabOrder", {"testType": "CBC"})
        controller.summary = "SUMMARY: kept"

        await controller.stop()

        assert controller.is_active is False
        assert controller.conversation == []
        assert controller.diagnostic_log == []
        assert [a.type for a in controller.detected_actions] == ["sendLabOrder"]
        assert controller.summary == "SUMMARY: kept"
        assert statuses[-1] == "Session stopped"

    @pytest.mark.asyncio
    async def test_stop_is_idempotent(self, controller, fake_transport, statuses):
        await controller.stop()
        await controller.stop()
        assert controller.is_active is False
        assert "Session stopped" not in statuses

    @pytest.mark.asyncio
    async def test_context_manager_stops(self, fake_transport, session_config):
        async with SessionController(transport=fake_transport, session_config=session_config) as controller:
            await controller.start()
        assert controller.is_active is False
        assert fake_transport.close_calls == 1

    @pytest.mark.asyncio
    async def test_state_is_a_copy(self, controller):
        await controller.start()
        state = controller.state
        state.is_active = False
        assert controller.is_active is True


class TestToggleRestart:
    """Tests for toggle, restart and new_conversation."""

    @pytest.mark.asyncio
    async def test_toggle_starts_then_stops(self, controller, fake_transport):
        assert await controller.toggle() is True
        assert controller.is_active is True
        # Inactive toggle releases before acquiring
        assert fake_transport.close_calls == 1

        assert await controller.toggle() is False
        assert controller.is_active is False
        assert fake_transport.open_calls == 1

    @pytest.mark.asyncio
    async def test_restart(self, controller, fake_transport):
        await controller.start()
        assert await controller.restart() is True
        assert fake_transport.open_calls == 2
        assert controller.is_active is True

    @pytest.mark.asyncio
    async def test_new_conversation_forgets_outcomes(self, controller):
        await controller.start()
        controller.protocol.log_action("endSession", {"reason": "done"})
        controller.summary = "SUMMARY: old"

        await controller.new_conversation()

        assert controller.detected_actions == []
        assert controller.summary == ""
        assert controller.is_active is False


# ============================================================================
# Messaging
# ============================================================================

class TestSendText:
    """Tests for typed input."""

    @pytest.mark.asyncio
    async def test_send_when_not_started(self, controller):
        assert controller.send_text("hello") is False
        assert controller.conversation == []

    @pytest.mark.asyncio
    async def test_send_before_channel_opens(self, controller, fake_transport):
        await controller.start()
        assert controller.send_text("hello") is False
        assert fake_transport.data_channel.sent == []

    @pytest.mark.asyncio
    async def test_send_echoes_and_sends(self, controller, fake_transport):
        await controller.start()
        fake_transport.open_channel()
        fake_transport.data_channel.sent.clear()

        assert controller.send_text("How are you feeling today?") is True

        turn = controller.conversation[-1]
        assert turn.role == TurnRole.USER
        assert turn.is_final is True
        assert turn.text == "How are you feeling today?"
        assert [e["type"] for e in _sent(fake_transport)] == ["conversation.item.create", "response.create"]


# ============================================================================
# Summary
# ============================================================================

class TestSummary:
    """Tests for summary requests and the local fallback."""

    def test_basic_summary_without_actions(self, sample_turns):
        summary = build_basic_summary(sample_turns, [])

        assert summary.startswith("SUMMARY:")
        assert "No specific follow-up appointments or lab orders" in summary
        assert "1 patient messages and 1 doctor/interpreter messages" in summary

    def test_basic_summary_lists_actions(self):
        actions = [
            DetectedAction("scheduleFollowupAppointment", {"patientName": "Ana", "timeframe": "2 weeks"}),
            DetectedAction("sendLabOrder", {"patientName": "Ana", "testType": "CBC"}),
            DetectedAction("endSession", {"reason": "done"}),
        ]
        summary = build_basic_summary([], actions)

        assert "Follow-up appointment scheduled for patient Ana in 2 weeks for reason: General follow-up" in summary
        assert "Lab order sent for patient Ana, test type: CBC, urgency: routine" in summary
        assert '- endSession: {"reason": "done"}' in summary

    @pytest.mark.asyncio
    async def test_existing_summary_returned(self, controller):
        controller.summary = "SUMMARY: ready"
        assert await controller.request_summary() == "SUMMARY: ready"
        assert controller.fallback_task is None

    @pytest.mark.asyncio
    async def test_inactive_session_returns_empty(self, controller):
        assert await controller.request_summary() == ""
        assert controller.fallback_task is None

    @pytest.mark.asyncio
    async def test_fallback_builds_and_saves_summary(self, controller, fake_transport):
        summary_tool = AsyncMock(return_value={"success": True, "message": "saved"})
        controller.register_tool(SUMMARY_TOOL, summary_tool, record_action=False)
        await controller.start()
        fake_transport.open_channel()

        assert await controller.request_summary() == ""
        await controller.fallback_task

        assert controller.summary.startswith("SUMMARY:")
        summary_tool.assert_awaited_once_with({"includeActions": True, "forceGenerate": True})
        request = _sent(fake_transport)[-2]
        assert "generateConversationSummary" in request["item"]["content"][0]["text"]

    @pytest.mark.asyncio
    async def test_stop_cancels_fallback(self, fake_transport, session_config):
        controller = SessionController(
            transport=fake_transport,
            session_config=replace(session_config, summary_fallback_delay_s=30.0),
        )
        summary_tool = AsyncMock()
        controller.register_tool(SUMMARY_TOOL, summary_tool, record_action=False)
        await controller.start()

        await controller.request_summary()
        task = controller.fallback_task
        await controller.stop()
        await asyncio.gather(task, return_exceptions=True)

        assert task.done()
        assert controller.fallback_task is None
        summary_tool.assert_not_awaited()
        assert controller.summary == ""


class TestConversationEnd:
    """Tests for the end-of-conversation callback wiring."""

    @pytest.mark.asyncio
    async def test_ending_phrase_notifies_host(self, fake_transport, session_config):
        on_end = MagicMock()
        controller = SessionController(
            transport=fake_transport,
            session_config=session_config,
            on_conversation_end=on_end,
        )
        await controller.start()
        await fake_transport.on_message(
            '{"type": "response.audio_transcript.delta", "delta": "Thank you for your time"}'
        )
        await fake_transport.on_message('{"type": "response.audio_transcript.done"}')
        await controller.protocol.ending_task

        on_end.assert_called_once()
        assert controller.summary == "Thank you for your time"
