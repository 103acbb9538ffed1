# codestream/events.py
import json
import logging
from typing import Any, Callable, List, Literal, Optional

from pydantic import BaseModel, ConfigDict

logger = logging.getLogger("codestream")

EventType = Literal[
    "status",
    "conversation",
    "stream",
    "component",
    "app",
    "package",
    "warning",
    "info",
    "complete",
    "error",
]

TERMINAL_EVENT_TYPES = ("complete", "error")


class ProgressEvent(BaseModel):
    """
    One progress message for the observer of a session.
    Field names follow the wire contract (camelCase where the client expects it).
    """

    model_config = ConfigDict(frozen=True)

    type: EventType
    message: Optional[str] = None
    text: Optional[str] = None
    raw: Optional[bool] = None
    name: Optional[str] = None
    path: Optional[str] = None
    index: Optional[int] = None
    generatedCode: Optional[str] = None
    explanation: Optional[str] = None
    files: Optional[int] = None
    components: Optional[int] = None
    model: Optional[str] = None
    packagesToInstall: Optional[List[str]] = None
    warnings: Optional[List[str]] = None
    error: Optional[str] = None

    def to_payload(self) -> dict:
        return self.model_dump(exclude_none=True)

    def to_sse(self) -> str:
        return f"data: {json.dumps(self.to_payload())}\n\n"


class ProgressReporter:
    """
    Fire-and-forget sink wrapper.

    - events go out in emission order
    - a failing sink is logged and never interrupts the session
    - exactly one terminal event (complete/error) is let through
    """

    def __init__(self, sink: Callable[[ProgressEvent], Any] | None = None):
        self._sink = sink
        self.history: List[ProgressEvent] = []
        self.terminated = False

    def emit(self, event_type: EventType, **fields: Any) -> Optional[ProgressEvent]:
        if self.terminated:
            logger.debug(f"Dropping '{event_type}' event emitted after session termination")
            return None

        event = ProgressEvent(type=event_type, **fields)
        if event_type in TERMINAL_EVENT_TYPES:
            self.terminated = True
        self.history.append(event)

        if self._sink is not None:
            try:
                self._sink(event)
            except Exception as e:
                logger.warning(f"Progress sink failed on '{event_type}' event (ignored): {e}")
        return event

    def of_type(self, event_type: str) -> List[ProgressEvent]:
        return [e for e in self.history if e.type == event_type]

    # -----------------------
    # Shorthands
    # -----------------------

    def status(self, message: str) -> None:
        self.emit("status", message=message)

    def info(self, message: str) -> None:
        self.emit("info", message=message)

    def warning(self, message: str, warnings: List[str] | None = None) -> None:
        self.emit("warning", message=message, warnings=warnings)

    def error(self, error: str) -> None:
        self.emit("error", error=error)
