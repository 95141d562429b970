"""
Realtime Interpreter Session Module

Event-driven core of a live interpreter session.

Architecture:
- Detectors: Language, speaker, repeat-request, ending and summary heuristics
- Tools: Registry of handlers the remote service may call
- Conversation: Ordered turns, ephemeral user turn, action log
- Events: Side-channel wire format
- Protocol: Dispatcher turning inbound events into state changes
- Transport: WebRTC peer connection, data channel, metering
- Session Controller: start/stop/toggle and observable state

Usage:
    from medinterp.realtime import SessionController

    controller = SessionController()
    await controller.start()
"""

from .detectors import (
    DEFAULT_DETECTOR_CONFIG,
    DetectorConfig,
    Language,
    TextDetectors,
    detect_language,
    is_conversation_ending,
    is_primary_speaker,
    is_repeat_request,
    is_secondary_language,
    looks_like_summary,
)
from .wake_phrase import levenshtein_distance, matches_wake_phrase
from .tools import FunctionResult, ToolDescriptor, ToolEntry, ToolParameter, ToolRegistry
from .conversation import (
    ActionLog,
    ConversationStore,
    ConversationTurn,
    DetectedAction,
    TurnRole,
    TurnStatus,
)
from .events import EventKind, InboundEvent, ProtocolError, parse_inbound
from .protocol import SUMMARY_TOOL, ProtocolConfig, ProtocolHandler
from .transport import AudioLevelMeter, SessionTransport, SideChannel, TransportState
from .session_controller import SessionController, SessionState, build_basic_summary

__all__ = [
    # Detectors
    "DEFAULT_DETECTOR_CONFIG",
    "DetectorConfig",
    "Language",
    "TextDetectors",
    "detect_language",
    "is_conversation_ending",
    "is_primary_speaker",
    "is_repeat_request",
    "is_secondary_language",
    "looks_like_summary",
    "levenshtein_distance",
    "matches_wake_phrase",
    # Tools
    "FunctionResult",
    "ToolDescriptor",
    "ToolEntry",
    "ToolParameter",
    "ToolRegistry",
    # Conversation
    "ActionLog",
    "ConversationStore",
    "ConversationTurn",
    "DetectedAction",
    "TurnRole",
    "TurnStatus",
    # Protocol
    "EventKind",
    "InboundEvent",
    "ProtocolError",
    "parse_inbound",
    "SUMMARY_TOOL",
    "ProtocolConfig",
    "ProtocolHandler",
    # Transport
    "AudioLevelMeter",
    "SessionTransport",
    "SideChannel",
    "TransportState",
    # Controller
    "SessionController",
    "SessionState",
    "build_basic_summary",
]
