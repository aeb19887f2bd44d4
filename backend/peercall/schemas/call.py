"""
Call Record Schemas

Pydantic models for the shared call record and the HTTP control surface.
Record fields are serialized with camelCase aliases (callId, createdBy, ...)
so both peers read and write the same document shape.
"""
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CallStatus(str, Enum):
    PENDING = "pending"
    ACTIVE = "active"
    ENDED = "ended"


class SessionDescription(BaseModel):
    """An SDP offer or answer."""
    sdp: str
    type: Literal["offer", "answer"]


class CallRecord(BaseModel):
    """
    Shared call record, addressed by a call id both peers derive on their own.

    offer/answer are written once; candidates are append-only per participant.
    On end the negotiation fields are removed and status/ended_at remain.
    """
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    call_id: str
    participants: List[str] = Field(default_factory=list)
    created_by: Optional[str] = None
    offer: Optional[SessionDescription] = None
    answer: Optional[SessionDescription] = None
    candidates: Dict[str, List[Dict[str, Any]]] = Field(default_factory=dict)
    status: CallStatus = CallStatus.PENDING
    created_at: Optional[datetime] = None
    ended_at: Optional[datetime] = None

    def is_caller(self, user_id: str) -> bool:
        return self.created_by == user_id

    def candidates_from(self, user_id: str) -> List[Dict[str, Any]]:
        return self.candidates.get(user_id, [])


# =============================================================================
# HTTP control surface
# =============================================================================

class StartCallRequest(BaseModel):
    counterpart_id: str


class AcceptCallRequest(BaseModel):
    counterpart_id: str


class CallFailureInfo(BaseModel):
    reason: str
    message: str


class CallStateResponse(BaseModel):
    call_id: Optional[str]
    state: str
    role: Optional[str]
    counterpart_id: Optional[str]
    has_local_stream: bool
    has_remote_stream: bool
    failure: Optional[CallFailureInfo] = None


class EndCallResponse(BaseModel):
    call_id: str
    state: str
    message: str
