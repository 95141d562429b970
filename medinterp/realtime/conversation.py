"""
Conversation Store Module

Holds the conversation log of a live session and reconciles streaming
content into it:
- Ephemeral user turn: tracked by id while speech is being transcribed
- Trailing assistant turn: identified by position while tokens stream in
- Action log: deduplicated record of tool invocations

Turns are appended in sequence order and never reordered. A turn becomes
immutable once final.
"""

import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Iterator, List, Optional

from medinterp.logger import get_logger

logger = get_logger(__name__)


class TurnRole(str, Enum):
    """Lane a turn belongs to."""
    USER = "user"            # local speakers (clinician and patient)
    ASSISTANT = "assistant"  # remote interpreter output


class TurnStatus(str, Enum):
    """Progress of a turn while it is being populated."""
    SPEAKING = "speaking"
    PROCESSING = "processing"
    FINAL = "final"


def _iso(ts: float) -> str:
    return datetime.fromtimestamp(ts, tz=timezone.utc).isoformat()


@dataclass
class ConversationTurn:
    """Single conversation entry."""
    id: str
    role: TurnRole
    text: str = ""
    created_at: float = field(default_factory=time.time)
    is_final: bool = False
    status: Optional[TurnStatus] = None
    language: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """Wire/persistence form."""
        data: Dict[str, Any] = {
            "id": self.id,
            "role": self.role.value,
            "text": self.text,
            "timestamp": _iso(self.created_at),
            "isFinal": self.is_final,
        }
        if self.status is not None:
            data["status"] = self.status.value
        if self.language is not None:
            data["language"] = self.language
        return data


@dataclass
class DetectedAction:
    """Recorded tool invocation."""
    type: str
    data: Dict[str, Any]
    occurred_at: float = field(default_factory=time.time)

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.type, "data": self.data, "timestamp": _iso(self.occurred_at)}

    def matches(self, action_type: str, data: Dict[str, Any]) -> bool:
        return self.type == action_type and self.data == data


_UPDATABLE_FIELDS = ("text", "status", "is_final")


class ConversationStore:
    """
    Ordered sequence of conversation turns.

    At most one non-final turn exists per track: the ephemeral user turn
    (by id) and the trailing assistant turn (by position).

    Usage:
        store = ConversationStore()
        store.begin_ephemeral_turn()
        store.update_ephemeral_turn(text="hola")
        store.finalize_ephemeral_turn("hola doctor")
    """

    def __init__(self) -> None:
        self._turns: List[ConversationTurn] = []
        self._ephemeral_id: Optional[str] = None

    @staticmethod
    def _new_id() -> str:
        return str(uuid.uuid4())

    def _find(self, turn_id: str) -> Optional[ConversationTurn]:
        for turn in self._turns:
            if turn.id == turn_id:
                return turn
        return None

    # ------------------------------------------------------------------
    # Ephemeral user track
    # ------------------------------------------------------------------

    def begin_ephemeral_turn(self, role: TurnRole = TurnRole.USER) -> str:
        """Return the outstanding ephemeral id, creating a turn if none is open."""
        if self._ephemeral_id is not None:
            return self._ephemeral_id

        turn = ConversationTurn(
            id=self._new_id(),
            role=role,
            text="",
            is_final=False,
            status=TurnStatus.SPEAKING,
        )
        self._turns.append(turn)
        self._ephemeral_id = turn.id
        logger.debug(f"Ephemeral turn started: {turn.id}")
        return turn.id

    def update_ephemeral_turn(self, **partial: Any) -> Optional[ConversationTurn]:
        """
        Apply partial field updates (text, status, is_final) to the ephemeral turn.

        No-op when no ephemeral turn is outstanding.
        """
        unknown = set(partial) - set(_UPDATABLE_FIELDS)
        if unknown:
            raise ValueError(f"Cannot update turn fields: {sorted(unknown)}")

        if self._ephemeral_id is None:
            return None
        turn = self._find(self._ephemeral_id)
        if turn is None or turn.is_final:
            return None

        for name, value in partial.items():
            if name == "status" and value is not None:
                value = TurnStatus(value)
            setattr(turn, name, value)
        return turn

    def finalize_ephemeral_turn(self, text: str) -> Optional[ConversationTurn]:
        """Set the final transcript and release the ephemeral reference."""
        turn = self.update_ephemeral_turn(text=text, is_final=True, status=TurnStatus.FINAL)
        self._ephemeral_id = None
        return turn

    def tag_language(self, turn_id: str, language: str) -> None:
        turn = self._find(turn_id)
        if turn is not None:
            turn.language = language

    # ------------------------------------------------------------------
    # Trailing assistant track
    # ------------------------------------------------------------------

    def append_streaming_assistant_delta(self, fragment: str) -> ConversationTurn:
        """Extend the trailing non-final assistant turn or start a new one."""
        last = self.last_turn
        if last is not None and last.role == TurnRole.ASSISTANT and not last.is_final:
            last.text += fragment
            return last

        turn = ConversationTurn(
            id=self._new_id(),
            role=TurnRole.ASSISTANT,
            text=fragment,
            is_final=False,
        )
        self._turns.append(turn)
        return turn

    def finalize_last_assistant_turn(self) -> Optional[ConversationTurn]:
        """Mark the last turn final. Returns it, or None if the store is empty."""
        last = self.last_turn
        if last is None:
            return None
        last.is_final = True
        return last

    # ------------------------------------------------------------------
    # Direct turns and lifecycle
    # ------------------------------------------------------------------

    def append_final_user_turn(self, text: str) -> ConversationTurn:
        """Append a complete user turn (typed input echo)."""
        turn = ConversationTurn(
            id=self._new_id(),
            role=TurnRole.USER,
            text=text,
            is_final=True,
            status=TurnStatus.FINAL,
        )
        self._turns.append(turn)
        return turn

    def reset(self) -> None:
        """Clear all turns and the ephemeral reference."""
        self._turns.clear()
        self._ephemeral_id = None

    @property
    def turns(self) -> List[ConversationTurn]:
        return list(self._turns)

    @property
    def last_turn(self) -> Optional[ConversationTurn]:
        return self._turns[-1] if self._turns else None

    @property
    def ephemeral_id(self) -> Optional[str]:
        return self._ephemeral_id

    @property
    def message_languages(self) -> Dict[str, str]:
        return {t.id: t.language for t in self._turns if t.language}

    def final_turns(self, role: Optional[TurnRole] = None) -> List[ConversationTurn]:
        return [t for t in self._turns if t.is_final and (role is None or t.role == role)]

    def to_list(self) -> List[Dict[str, Any]]:
        return [t.to_dict() for t in self._turns]

    def __len__(self) -> int:
        return len(self._turns)


class ActionLog:
    """
    Ordered, deduplicated list of detected actions.

    Never contains two entries with identical type and payload.
    """

    def __init__(self) -> None:
        self._actions: List[DetectedAction] = []

    def record(self, action_type: str, data: Optional[Dict[str, Any]] = None) -> bool:
        """Append an action unless an identical one exists. Returns True if added."""
        payload = dict(data or {})
        if any(a.matches(action_type, payload) for a in self._actions):
            logger.debug(f"Action already recorded, skipping: {action_type}")
            return False
        self._actions.append(DetectedAction(type=action_type, data=payload))
        logger.info(f"Action recorded: {action_type}")
        return True

    def clear(self) -> None:
        self._actions.clear()

    def to_list(self) -> List[Dict[str, Any]]:
        return [a.to_dict() for a in self._actions]

    @property
    def actions(self) -> List[DetectedAction]:
        return list(self._actions)

    def __iter__(self) -> Iterator[DetectedAction]:
        return iter(list(self._actions))

    def __len__(self) -> int:
        return len(self._actions)
