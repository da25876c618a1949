"""
Worker Event Protocol

Line-oriented events a worker writes to stdout:

    MEASUREMENT key=value [key=value ...]
    DONE
    ERROR <message>

Blank lines are ignored; anything else is a protocol violation. Values
use the same escaping as configured argument lists, so ``\\ `` is a
literal space.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Dict, Mapping, Optional

from benchmatrix.core.exceptions import ProtocolViolationError
from benchmatrix.core.tokenize import escape_arg, tokenize_args

from .types import Measurement


class EventKind(str, Enum):
    """Kinds of worker events."""
    MEASUREMENT = "MEASUREMENT"
    DONE = "DONE"
    ERROR = "ERROR"


@dataclass(frozen=True)
class WorkerEvent:
    """One parsed worker event."""
    kind: EventKind
    measurement: Optional[Measurement] = None
    message: Optional[str] = None

    @property
    def is_terminal(self) -> bool:
        return self.kind in (EventKind.DONE, EventKind.ERROR)


def parse_event(line: str) -> Optional[WorkerEvent]:
    """
    Parse one stdout line.

    Returns:
        The event, or None for a blank line

    Raises:
        ProtocolViolationError: For anything that is not a well-formed event
    """
    stripped = line.strip()
    if not stripped:
        return None

    parts = stripped.split(None, 1)
    keyword = parts[0]
    rest = parts[1] if len(parts) > 1 else ""

    if keyword == EventKind.MEASUREMENT.value:
        return WorkerEvent(EventKind.MEASUREMENT, measurement=Measurement(_parse_values(rest, line)))
    if keyword == EventKind.DONE.value:
        if rest:
            raise ProtocolViolationError("DONE takes no arguments", raw_line=line)
        return WorkerEvent(EventKind.DONE)
    if keyword == EventKind.ERROR.value:
        return WorkerEvent(EventKind.ERROR, message=rest or "worker reported an error")

    raise ProtocolViolationError(f"Unknown worker event '{keyword}'", raw_line=line)


def _parse_values(text: str, line: str) -> Dict[str, str]:
    tokens = tokenize_args(text)
    if not tokens:
        raise ProtocolViolationError("MEASUREMENT without values", raw_line=line)

    values: Dict[str, str] = {}
    for token in tokens:
        key, sep, value = token.partition("=")
        if not sep or not key:
            raise ProtocolViolationError(f"Malformed measurement value '{token}'", raw_line=line)
        if key in values:
            raise ProtocolViolationError(f"Duplicate measurement key '{key}'", raw_line=line)
        values[key] = value
    return values


def format_measurement(values: Mapping) -> str:
    """Render a MEASUREMENT line."""
    fields = " ".join(f"{escape_arg(str(key))}={escape_arg(str(value))}" for key, value in values.items())
    return f"{EventKind.MEASUREMENT.value} {fields}"


def format_done() -> str:
    return EventKind.DONE.value


def format_error(message: str) -> str:
    """Render an ERROR line; the message is folded onto one line."""
    folded = " ".join(str(message).split())
    return f"{EventKind.ERROR.value} {folded or 'worker reported an error'}"
