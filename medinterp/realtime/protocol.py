"""
Protocol Handler Module

Interprets inbound side-channel events and turns them into conversation
store mutations, tool invocations, and outbound control events.

The handler is a single dispatcher keyed by event kind. The "state" of the
exchange lives in the conversation store (ephemeral user turn, trailing
assistant turn); events are handled one at a time in arrival order, and
tool handlers are awaited before the next event is looked at.

Failure semantics:
- Malformed JSON, unknown kinds, unknown tools: logged, processing continues
- Tool handler errors: logged and reported back as a failed function result
- Sends to a missing or closed channel: logged, never raised
- Tool calls run in their own tasks and finish even if the session stops
"""

import asyncio
import json
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional, Protocol, Set, Union

from medinterp.logger import get_logger
from medinterp.messages import msg

from .conversation import ActionLog, ConversationStore, TurnStatus
from .detectors import Language, TextDetectors
from .events import (
    EventKind,
    InboundEvent,
    ProtocolError,
    function_call_output,
    parse_inbound,
    response_create,
    user_message,
)
from .tools import FunctionResult, ToolRegistry

logger = get_logger(__name__)

SUMMARY_TOOL = "generateConversationSummary"

EndCallback = Callable[[], Union[None, Awaitable[None]]]


class EventSender(Protocol):
    """Outbound side of the side-channel, as seen by the handler."""

    @property
    def is_open(self) -> bool: ...

    def send_event(self, event: Dict[str, Any]) -> bool: ...


@dataclass
class ProtocolConfig:
    """Configuration for the protocol handler."""
    processing_label: str = msg("turn.processing")
    partial_placeholder: str = "User is speaking..."
    repeat_template: str = msg("repeat.request", text="{text}")
    summary_tool: str = SUMMARY_TOOL
    ending_delay_s: float = 1.0
    max_log_entries: int = 0  # 0 = unbounded


class ProtocolHandler:
    """
    Dispatcher for inbound realtime events.

    Usage:
        handler = ProtocolHandler(store, actions, registry)
        handler.attach_channel(side_channel)
        await handler.handle_message(raw_json)
    """

    def __init__(
        self,
        store: ConversationStore,
        actions: ActionLog,
        tools: ToolRegistry,
        detectors: Optional[TextDetectors] = None,
        config: Optional[ProtocolConfig] = None,
        on_conversation_end: Optional[EndCallback] = None,
    ):
        self._store = store
        self._actions = actions
        self._tools = tools
        self._detectors = detectors or TextDetectors()
        self._config = config or ProtocolConfig()
        self._on_conversation_end = on_conversation_end

        self._channel: Optional[EventSender] = None
        self._log: List[Dict[str, Any]] = []
        self._summary = ""
        self._previous_primary_utterance = ""

        self._ending_fired = False
        self._ending_task: Optional[asyncio.Task] = None
        self._tool_tasks: Set[asyncio.Task] = set()

        self._handlers: Dict[EventKind, Callable[[InboundEvent], Awaitable[None]]] = {
            EventKind.SPEECH_STARTED: self._on_speech_started,
            EventKind.SPEECH_STOPPED: self._on_speech_stopped,
            EventKind.AUDIO_COMMITTED: self._on_audio_committed,
            EventKind.PARTIAL_TRANSCRIPTION: self._on_partial_transcription,
            EventKind.FINAL_TRANSCRIPTION: self._on_final_transcription,
            EventKind.ASSISTANT_DELTA: self._on_assistant_delta,
            EventKind.ASSISTANT_DONE: self._on_assistant_done,
            EventKind.TOOL_CALL_REQUESTED: self._on_tool_call,
        }

    # ========================================================================
    # Channel
    # ========================================================================

    def attach_channel(self, channel: Optional[EventSender]) -> None:
        self._channel = channel

    def detach_channel(self) -> None:
        self._channel = None

    def send(self, event: Dict[str, Any]) -> bool:
        """Send an outbound event; returns False if it could not be delivered."""
        channel = self._channel
        if channel is None or not channel.is_open:
            logger.warning(f"Side-channel not open, dropping outbound {event.get('type')}")
            return False
        return channel.send_event(event)

    def send_user_text(self, text: str) -> bool:
        """Send a user message followed by a generation request."""
        if not self.send(user_message(text)):
            return False
        return self.send(response_create())

    # ========================================================================
    # Inbound dispatch
    # ========================================================================

    async def handle_message(self, payload: Union[str, bytes, Dict[str, Any]]) -> Optional[InboundEvent]:
        """Process one inbound message. Never raises for protocol faults."""
        try:
            event = parse_inbound(payload)
        except ProtocolError as e:
            logger.warning(f"Ignoring inbound message: {e}")
            self._append_log({"type": "invalid", "data": payload if isinstance(payload, str) else repr(payload)})
            return None

        self._append_log(event.raw)

        handler = self._handlers.get(event.kind)
        if handler is None:
            logger.debug(f"Unhandled event type: {event.type}")
            return event

        try:
            await handler(event)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Error handling {event.type}: {e}")
        return event

    def _append_log(self, entry: Dict[str, Any]) -> None:
        self._log.append(entry)
        cap = self._config.max_log_entries
        if cap and len(self._log) > cap:
            del self._log[: len(self._log) - cap]

    # ------------------------------------------------------------------
    # User speech
    # ------------------------------------------------------------------

    async def _on_speech_started(self, event: InboundEvent) -> None:
        self._store.begin_ephemeral_turn()
        self._store.update_ephemeral_turn(status=TurnStatus.SPEAKING)

    async def _on_speech_stopped(self, event: InboundEvent) -> None:
        self._store.update_ephemeral_turn(status=TurnStatus.SPEAKING)

    async def _on_audio_committed(self, event: InboundEvent) -> None:
        self._store.update_ephemeral_turn(
            text=self._config.processing_label,
            status=TurnStatus.PROCESSING,
        )

    async def _on_partial_transcription(self, event: InboundEvent) -> None:
        text = event.transcript
        if text is None:
            text = event.text
        if text is None:
            text = self._config.partial_placeholder
        self._store.update_ephemeral_turn(text=text, status=TurnStatus.SPEAKING, is_final=False)

    async def _on_final_transcription(self, event: InboundEvent) -> None:
        transcript = event.transcript or ""
        turn_id = self._store.ephemeral_id

        if turn_id is not None:
            language = self._detectors.detect_language(transcript)
            self._store.tag_language(turn_id, language.value)

            if (
                language == Language.SECONDARY
                and self._detectors.is_repeat_request(transcript)
                and self._previous_primary_utterance
            ):
                logger.info("Repeat request detected, replaying previous clinician message")
                self.send_user_text(
                    self._config.repeat_template.format(text=self._previous_primary_utterance)
                )

        self._store.finalize_ephemeral_turn(transcript)

    # ------------------------------------------------------------------
    # Assistant transcript
    # ------------------------------------------------------------------

    async def _on_assistant_delta(self, event: InboundEvent) -> None:
        self._store.append_streaming_assistant_delta(event.delta)

    async def _on_assistant_done(self, event: InboundEvent) -> None:
        turn = self._store.finalize_last_assistant_turn()
        if turn is None:
            return
        text = turn.text

        if self._detectors.is_primary_speaker(text):
            self._previous_primary_utterance = text

        if self._detectors.looks_like_summary(text):
            logger.info("Summary detected in assistant message")
            self._summary = text

        if self._detectors.is_conversation_ending(text):
            logger.info("Conversation ending detected")
            if not self._summary:
                self._summary = text
            self._schedule_conversation_end()

    # ------------------------------------------------------------------
    # Tool calls
    # ------------------------------------------------------------------

    async def _on_tool_call(self, event: InboundEvent) -> None:
        name = event.name
        entry = self._tools.get(name)
        if entry is None:
            logger.warning(f"Function not found in registry: {name}")
            return

        try:
            args = json.loads(event.arguments) if event.arguments.strip() else {}
            if not isinstance(args, dict):
                raise ValueError("arguments must be a JSON object")
        except ValueError as e:
            logger.warning(f"Invalid arguments for {name}: {e}")
            self._reply_tool_result(event.call_id, FunctionResult.failure("Invalid tool arguments", e))
            return

        logger.info(f"Executing function: {name}")
        if entry.record_action:
            self._actions.record(name, args)

        # Tool calls run to completion even if the session stops meanwhile;
        # only the wait in the inbound pump is cancelled.
        task = asyncio.create_task(self._run_tool(name, entry.handler, args, event.call_id))
        self._tool_tasks.add(task)
        task.add_done_callback(self._tool_tasks.discard)
        await asyncio.shield(task)

    async def _run_tool(
        self,
        name: str,
        handler: Callable[[Dict[str, Any]], Awaitable[Any]],
        args: Dict[str, Any],
        call_id: Optional[str],
    ) -> None:
        try:
            result = FunctionResult.from_value(await handler(args))
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Error executing function {name}: {e}")
            result = FunctionResult.failure(f"Function {name} failed", e)

        if name == self._config.summary_tool and result.summary:
            self._summary = result.summary

        self._reply_tool_result(call_id, result)

    def _reply_tool_result(self, call_id: Optional[str], result: FunctionResult) -> None:
        if self.send(function_call_output(call_id, result.to_dict())):
            self.send(response_create())

    # ========================================================================
    # Conversation end
    # ========================================================================

    def _schedule_conversation_end(self) -> None:
        if self._ending_fired or self._on_conversation_end is None:
            return
        self._ending_fired = True
        self._ending_task = asyncio.create_task(self._fire_conversation_end())

    async def _fire_conversation_end(self) -> None:
        try:
            await asyncio.sleep(self._config.ending_delay_s)
            logger.info("Triggering conversation end callback")
            result = self._on_conversation_end()
            if asyncio.iscoroutine(result):
                await result
        except asyncio.CancelledError:
            pass
        except Exception as e:
            logger.error(f"Conversation end callback failed: {e}")

    def cancel_timers(self) -> None:
        task = self._ending_task
        self._ending_task = None
        if task is None or task.done():
            return
        try:
            current = asyncio.current_task()
        except RuntimeError:
            current = None
        # The callback itself may stop the session; it must not cancel itself.
        if task is not current:
            task.cancel()

    # ========================================================================
    # State
    # ========================================================================

    def log_action(self, action_type: str, data: Optional[Dict[str, Any]] = None) -> bool:
        """Explicitly record an action (deduplicated)."""
        return self._actions.record(action_type, data)

    def reset(self) -> None:
        """Forget per-session state. Summary and actions are kept."""
        self.cancel_timers()
        self._log.clear()
        self._previous_primary_utterance = ""
        self._ending_fired = False

    @property
    def summary(self) -> str:
        return self._summary

    @summary.setter
    def summary(self, value: str) -> None:
        self._summary = value or ""

    @property
    def previous_primary_utterance(self) -> str:
        return self._previous_primary_utterance

    @property
    def diagnostic_log(self) -> List[Dict[str, Any]]:
        return list(self._log)

    @property
    def ending_task(self) -> Optional[asyncio.Task]:
        return self._ending_task

    @property
    def tool_tasks(self) -> Set[asyncio.Task]:
        return set(self._tool_tasks)

    @property
    def channel(self) -> Optional[EventSender]:
        return self._channel
