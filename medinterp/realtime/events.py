"""
Side-Channel Event Protocol

JSON objects exchanged with the realtime service over the data channel,
one object per message.

Inbound kinds (service -> client):
- Speech boundaries: speech_started, speech_stopped, committed
- User transcription: partial and completed
- Assistant transcript: delta and done
- Function call: arguments done

Outbound kinds (client -> service):
- session.update: modalities, tools, transcription model
- conversation.item.create: user message or function_call_output
- response.create: trigger generation
"""

import json
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence, Union


class ProtocolError(ValueError):
    """Inbound payload that is not a JSON object."""


class EventKind(str, Enum):
    """Inbound event kinds the protocol handler reacts to."""
    SPEECH_STARTED = "input_audio_buffer.speech_started"
    SPEECH_STOPPED = "input_audio_buffer.speech_stopped"
    AUDIO_COMMITTED = "input_audio_buffer.committed"
    PARTIAL_TRANSCRIPTION = "conversation.item.input_audio_transcription"
    FINAL_TRANSCRIPTION = "conversation.item.input_audio_transcription.completed"
    ASSISTANT_DELTA = "response.audio_transcript.delta"
    ASSISTANT_DONE = "response.audio_transcript.done"
    TOOL_CALL_REQUESTED = "response.function_call_arguments.done"
    UNKNOWN = "unknown"

    @classmethod
    def from_type(cls, value: Any) -> "EventKind":
        try:
            return cls(value)
        except ValueError:
            return cls.UNKNOWN


@dataclass
class InboundEvent:
    """Parsed inbound message, tagged by kind."""
    kind: EventKind
    raw: Dict[str, Any]
    received_at: float = field(default_factory=time.time)

    @property
    def type(self) -> str:
        return str(self.raw.get("type", ""))

    @property
    def transcript(self) -> Optional[str]:
        return self.raw.get("transcript")

    @property
    def text(self) -> Optional[str]:
        return self.raw.get("text")

    @property
    def delta(self) -> str:
        return self.raw.get("delta") or ""

    @property
    def name(self) -> str:
        return self.raw.get("name") or ""

    @property
    def arguments(self) -> str:
        return self.raw.get("arguments") or ""

    @property
    def call_id(self) -> Optional[str]:
        return self.raw.get("call_id")


def parse_inbound(payload: Union[str, bytes, Dict[str, Any]]) -> InboundEvent:
    """
    Decode one side-channel message.

    Raises:
        ProtocolError: If the payload is not valid JSON or not an object
    """
    if isinstance(payload, dict):
        data = payload
    else:
        if isinstance(payload, bytes):
            payload = payload.decode("utf-8", errors="replace")
        try:
            data = json.loads(payload)
        except (TypeError, json.JSONDecodeError) as e:
            raise ProtocolError(f"Malformed event payload: {e}") from e

    if not isinstance(data, dict):
        raise ProtocolError(f"Event payload must be an object, got {type(data).__name__}")

    return InboundEvent(kind=EventKind.from_type(data.get("type")), raw=data)


# ============================================================================
# Outbound builders
# ============================================================================

DEFAULT_MODALITIES = ("text", "audio")


def session_update(
    tools: Sequence[Dict[str, Any]],
    transcription_model: str = "whisper-1",
    modalities: Sequence[str] = DEFAULT_MODALITIES,
) -> Dict[str, Any]:
    """Session configuration sent once when the side-channel opens."""
    return {
        "type": "session.update",
        "session": {
            "modalities": list(modalities),
            "tools": list(tools),
            "input_audio_transcription": {"model": transcription_model},
        },
    }


def user_message(text: str) -> Dict[str, Any]:
    """User text item."""
    content: List[Dict[str, Any]] = [{"type": "input_text", "text": text}]
    return {
        "type": "conversation.item.create",
        "item": {"type": "message", "role": "user", "content": content},
    }


def response_create() -> Dict[str, Any]:
    """Ask the service to continue generating."""
    return {"type": "response.create"}


def function_call_output(call_id: Optional[str], result: Dict[str, Any]) -> Dict[str, Any]:
    """Tool result item carrying the serialized result."""
    return {
        "type": "conversation.item.create",
        "item": {
            "type": "function_call_output",
            "call_id": call_id,
            "output": json.dumps(result),
        },
    }
