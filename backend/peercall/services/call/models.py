"""
Call Models

Client-side state of a call session and the view handed to the UI.
"""
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional

from .exceptions import FailureReason


class CallState(str, Enum):
    IDLE = "idle"
    INITIATING = "initiating"
    NEGOTIATING = "negotiating"
    ACTIVE = "active"
    ENDING = "ending"
    ENDED = "ended"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (CallState.ENDED, CallState.FAILED)


class CallRole(str, Enum):
    CALLER = "caller"
    CALLEE = "callee"


@dataclass(frozen=True)
class CallFailure:
    """Single failure signal surfaced to the UI."""
    reason: FailureReason
    message: str


@dataclass(frozen=True)
class CallView:
    """What the UI controller observes about a session."""
    call_id: Optional[str]
    state: CallState
    role: Optional[CallRole] = None
    counterpart_id: Optional[str] = None
    local_stream: Any = None
    remote_stream: Any = None
    failure: Optional[CallFailure] = None


IDLE_VIEW = CallView(call_id=None, state=CallState.IDLE)
