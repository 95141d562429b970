"""
Session Controller Module

Public surface of a live interpreter session. Wires the transport, the
protocol handler, the conversation store and the tool registry together
and exposes start/stop/toggle plus the observable session state.

Lifecycle:
    start()  -> transport opens, side-channel configured on open
    stop()   -> transport released, conversation and diagnostics cleared;
                detected actions and the summary are kept for the summary view
    toggle() -> stop when active, otherwise stop (awaiting release) then start
"""

import asyncio
import json
from dataclasses import dataclass, replace
from typing import Any, Callable, Dict, Iterable, List, Optional

from medinterp.config import RealtimeConfig, SessionConfig, settings
from medinterp.core.realtime_api import TransportError
from medinterp.logger import get_logger
from medinterp.messages import language_prompt, msg

from .conversation import ActionLog, ConversationStore, ConversationTurn, DetectedAction, TurnRole
from .detectors import TextDetectors
from .events import session_update, user_message
from .protocol import SUMMARY_TOOL, EndCallback, ProtocolConfig, ProtocolHandler
from .tools import ToolDescriptor, ToolHandler, ToolRegistry
from .transport import SessionTransport, SideChannel, StatusCallback

logger = get_logger(__name__)


@dataclass
class SessionState:
    """Connection status label and activity flag."""
    connection_status: str = ""
    is_active: bool = False


def build_basic_summary(
    conversation: Iterable[ConversationTurn],
    actions: Iterable[DetectedAction],
) -> str:
    """Local summary used when the remote service did not produce one."""
    turns = list(conversation)
    actions = list(actions)
    patient_count = sum(1 for t in turns if t.role == TurnRole.USER and t.is_final)
    doctor_count = sum(1 for t in turns if t.role == TurnRole.ASSISTANT and t.is_final)

    summary = "SUMMARY:\n\nThis conversation included a medical consultation between a doctor and patient. "

    if actions:
        summary += "\n\nActions detected during the conversation:\n"
        for action in actions:
            data = action.data
            if action.type == "scheduleFollowupAppointment":
                summary += (
                    f"- Follow-up appointment scheduled for patient {data.get('patientName')} "
                    f"in {data.get('timeframe')} for reason: {data.get('reason') or 'General follow-up'}\n"
                )
            elif action.type == "sendLabOrder":
                summary += (
                    f"- Lab order sent for patient {data.get('patientName')}, "
                    f"test type: {data.get('testType')}, urgency: {data.get('urgency') or 'routine'}\n"
                )
            else:
                summary += f"- {action.type}: {json.dumps(data)}\n"
    else:
        summary += "\nNo specific follow-up appointments or lab orders were detected during this conversation."

    summary += (
        f"\n\nThe conversation consisted of {patient_count} patient messages "
        f"and {doctor_count} doctor/interpreter messages."
    )
    return summary


class SessionController:
    """
    Orchestrates one interpreter session at a time.

    Usage:
        controller = SessionController(on_conversation_end=show_summary)
        controller.register_tool("sendLabOrder", handler, descriptor)
        await controller.start()
        controller.send_text("How are you feeling today?")
        await controller.stop()
    """

    def __init__(
        self,
        transport: Optional[SessionTransport] = None,
        tools: Optional[ToolRegistry] = None,
        detectors: Optional[TextDetectors] = None,
        session_config: Optional[SessionConfig] = None,
        realtime_config: Optional[RealtimeConfig] = None,
        on_conversation_end: Optional[EndCallback] = None,
        on_status: Optional[StatusCallback] = None,
    ):
        self._config = session_config or settings.session
        self._realtime = realtime_config or settings.realtime
        self._on_status = on_status

        self.store = ConversationStore()
        self.actions = ActionLog()
        self.tools = tools or ToolRegistry()
        self.transport = transport or SessionTransport(realtime_config=self._realtime)
        self.transport.on_status = self._set_status

        self.protocol = ProtocolHandler(
            store=self.store,
            actions=self.actions,
            tools=self.tools,
            detectors=detectors,
            config=ProtocolConfig(
                ending_delay_s=self._config.ending_delay_s,
                max_log_entries=self._config.max_log_entries,
            ),
            on_conversation_end=on_conversation_end,
        )

        self._state = SessionState()
        self._start_lock = asyncio.Lock()
        self._stop_requested = False
        self._fallback_task: Optional[asyncio.Task] = None
        self._stop_hooks: List[Callable[[], None]] = []

    # ========================================================================
    # Status
    # ========================================================================

    def _set_status(self, label: str) -> None:
        self._state.connection_status = label
        logger.info(f"Status: {label}")
        if self._on_status:
            self._on_status(label)

    # ========================================================================
    # Lifecycle
    # ========================================================================

    async def start(self) -> bool:
        """
        Open the session. No-op when already active.

        Returns:
            True if the session is active afterwards
        """
        async with self._start_lock:
            if self._state.is_active:
                return True

            self._stop_requested = False
            try:
                channel = await self.transport.open(self.protocol.handle_message, self._on_channel_open)
            except TransportError as e:
                await self.transport.close()
                if self._stop_requested:
                    logger.info("Session start aborted by stop()")
                    return False
                logger.error(f"Failed to start session: {e}")
                self._set_status(msg("status.error", detail=e))
                return False

            self.protocol.attach_channel(channel)
            self._state.is_active = True
            self._set_status(msg("status.established"))
            return True

    def _on_channel_open(self, channel: SideChannel) -> None:
        """Declare tools and response language once the side-channel is up."""
        self.protocol.attach_channel(channel)
        channel.send_event(
            session_update(
                self.tools.descriptors(),
                transcription_model=self._realtime.transcription_model,
            )
        )
        channel.send_event(user_message(language_prompt(self._config.language)))
        logger.info(f"Session configured: {len(self.tools)} tools, language={self._config.language}")

    async def stop(self) -> None:
        """Release the session. Idempotent; actions and summary survive."""
        self._stop_requested = True
        was_active = self._state.is_active

        self.protocol.cancel_timers()
        self._cancel_fallback()
        for hook in list(self._stop_hooks):
            try:
                hook()
            except Exception as e:
                logger.error(f"Stop hook failed: {e}")
        self.protocol.detach_channel()

        await self.transport.close()

        self.store.reset()
        self.protocol.reset()
        self._state.is_active = False
        if was_active:
            self._set_status(msg("status.stopped"))

    async def _settle(self) -> None:
        if self._config.settle_delay_s > 0:
            await asyncio.sleep(self._config.settle_delay_s)

    async def toggle(self) -> bool:
        """Stop when active; otherwise make sure everything is released, then start."""
        if self._state.is_active:
            await self.stop()
            return False
        await self.stop()
        await self._settle()
        return await self.start()

    async def restart(self) -> bool:
        await self.stop()
        await self._settle()
        return await self.start()

    async def new_conversation(self) -> None:
        """Stop and forget the previous conversation's actions and summary."""
        await self.stop()
        self.actions.clear()
        self.protocol.summary = ""

    # ========================================================================
    # Messaging and tools
    # ========================================================================

    def send_text(self, text: str) -> bool:
        """Echo a typed user turn locally and send it to the service."""
        channel = self.protocol.channel
        if channel is None or not channel.is_open:
            logger.error(msg("status.channel_not_ready"))
            return False
        self.store.append_final_user_turn(text)
        return self.protocol.send_user_text(text)

    def register_tool(
        self,
        name: str,
        handler: ToolHandler,
        descriptor: Optional[ToolDescriptor] = None,
        record_action: bool = True,
    ) -> None:
        self.tools.register(name, handler, descriptor, record_action=record_action)

    def add_stop_hook(self, hook: Callable[[], None]) -> None:
        """Run `hook` on every stop(), to cancel timers owned outside the controller."""
        if hook not in self._stop_hooks:
            self._stop_hooks.append(hook)

    # ========================================================================
    # Summary
    # ========================================================================

    async def request_summary(self) -> str:
        """
        Ask the service for a summary, with a local fallback.

        Returns the existing summary immediately if there is one. Otherwise
        the request is sent and, if no summary has arrived after
        `summary_fallback_delay_s`, a basic one is built and the summary
        tool is invoked to save it.
        """
        if self.summary:
            return self.summary
        if not self._state.is_active:
            return ""

        self.send_text(msg("summary.request"))
        self._cancel_fallback()
        self._fallback_task = asyncio.create_task(self._summary_fallback())
        return ""

    async def _summary_fallback(self) -> None:
        try:
            await asyncio.sleep(self._config.summary_fallback_delay_s)
            if self.summary:
                return
            logger.info("No summary received, creating a basic summary as fallback")
            self.protocol.summary = build_basic_summary(self.store.turns, self.actions.actions)

            entry = self.tools.get(SUMMARY_TOOL)
            if entry is not None:
                await entry.handler({"includeActions": True, "forceGenerate": True})
        except asyncio.CancelledError:
            pass
        except Exception as e:
            logger.error(f"Summary fallback failed: {e}")

    def _cancel_fallback(self) -> None:
        task, self._fallback_task = self._fallback_task, None
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()

    # ========================================================================
    # Observable state
    # ========================================================================

    @property
    def state(self) -> SessionState:
        return replace(self._state)

    @property
    def is_active(self) -> bool:
        return self._state.is_active

    @property
    def connection_status(self) -> str:
        return self._state.connection_status

    @property
    def conversation(self) -> List[ConversationTurn]:
        return self.store.turns

    @property
    def message_languages(self) -> Dict[str, str]:
        return self.store.message_languages

    @property
    def detected_actions(self) -> List[DetectedAction]:
        return self.actions.actions

    @property
    def summary(self) -> str:
        return self.protocol.summary

    @summary.setter
    def summary(self, value: str) -> None:
        self.protocol.summary = value

    @property
    def diagnostic_log(self) -> List[Dict[str, Any]]:
        return self.protocol.diagnostic_log

    @property
    def current_volume(self) -> float:
        return self.transport.current_volume

    @property
    def local_speaking(self) -> bool:
        return self.transport.local_speaking

    @property
    def fallback_task(self) -> Optional[asyncio.Task]:
        return self._fallback_task

    async def __aenter__(self) -> "SessionController":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.stop()
