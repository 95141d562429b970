"""
Tool Registry Module

Named, schema-described capabilities the remote service may invoke.
The host registers async handlers; the protocol handler looks them up
when a function call arrives and the session controller declares their
descriptors when the side-channel opens.
"""

from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Iterator, List, Mapping, Optional, Union

from medinterp.logger import get_logger

logger = get_logger(__name__)


@dataclass
class FunctionResult:
    """
    Outcome of a tool handler, serialized back to the remote service.

    Attributes:
        success: Whether the side effect went through
        message: Human-readable outcome
        error: Error detail when success is False
        summary: Conversation summary (summary tool only)
    """
    success: bool
    message: str
    error: Optional[str] = None
    summary: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"success": self.success, "message": self.message}
        if self.error is not None:
            data["error"] = self.error
        if self.summary is not None:
            data["summary"] = self.summary
        return data

    @classmethod
    def from_value(cls, value: Union["FunctionResult", Mapping[str, Any], None]) -> "FunctionResult":
        """Normalize whatever a handler returned."""
        if isinstance(value, FunctionResult):
            return value
        if value is None:
            return cls(success=True, message="ok")
        if isinstance(value, Mapping):
            return cls(
                success=bool(value.get("success", True)),
                message=str(value.get("message", "")),
                error=value.get("error"),
                summary=value.get("summary"),
            )
        raise TypeError(f"Unsupported tool result type: {type(value).__name__}")

    @classmethod
    def failure(cls, message: str, error: Union[BaseException, str]) -> "FunctionResult":
        return cls(success=False, message=message, error=str(error))


ToolArgs = Dict[str, Any]
ToolHandler = Callable[[ToolArgs], Awaitable[Union[FunctionResult, Mapping[str, Any]]]]


@dataclass
class ToolParameter:
    """One property of a tool's argument object."""
    type: str
    description: str
    enum: Optional[List[str]] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"type": self.type, "description": self.description}
        if self.enum:
            data["enum"] = list(self.enum)
        return data


@dataclass
class ToolDescriptor:
    """Declaration of a tool in the format the session configuration expects."""
    name: str
    description: str
    properties: Dict[str, ToolParameter] = field(default_factory=dict)
    required: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": "function",
            "name": self.name,
            "description": self.description,
            "parameters": {
                "type": "object",
                "properties": {name: p.to_dict() for name, p in self.properties.items()},
                "required": list(self.required),
            },
        }


@dataclass
class ToolEntry:
    """Registered handler plus its declaration."""
    name: str
    handler: ToolHandler
    descriptor: Optional[ToolDescriptor] = None
    record_action: bool = True


class ToolRegistry:
    """
    Mutable name -> handler mapping, last registration wins.

    Usage:
        registry = ToolRegistry()
        registry.register("sendLabOrder", send_lab_order, descriptor)
        entry = registry.get("sendLabOrder")
    """

    def __init__(self) -> None:
        self._entries: Dict[str, ToolEntry] = {}

    def register(
        self,
        name: str,
        handler: ToolHandler,
        descriptor: Optional[ToolDescriptor] = None,
        record_action: bool = True,
    ) -> None:
        """Insert or overwrite a tool."""
        if name in self._entries:
            logger.debug(f"Replacing tool registration: {name}")
        self._entries[name] = ToolEntry(
            name=name,
            handler=handler,
            descriptor=descriptor,
            record_action=record_action,
        )

    def unregister(self, name: str) -> None:
        self._entries.pop(name, None)

    def get(self, name: str) -> Optional[ToolEntry]:
        return self._entries.get(name)

    def __contains__(self, name: object) -> bool:
        return name in self._entries

    def __iter__(self) -> Iterator[ToolEntry]:
        return iter(list(self._entries.values()))

    def __len__(self) -> int:
        return len(self._entries)

    @property
    def names(self) -> List[str]:
        return list(self._entries)

    def descriptors(self) -> List[Dict[str, Any]]:
        """Declared tool set for the session configuration event."""
        return [e.descriptor.to_dict() for e in self._entries.values() if e.descriptor]
