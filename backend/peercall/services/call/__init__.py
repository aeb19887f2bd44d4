"""
Call Service Module

Re-exports the call session state machine, controller and exceptions.
"""
from .controller import CallController
from .session import CallSession
from .models import CallFailure, CallRole, CallState, CallView
from .validators import make_call_id
from .exceptions import (
    CallServiceError,
    FailureReason,
    MediaAccessError,
    SignalingWriteError,
    InvalidRemoteDescriptionError,
    IceCandidateError,
    TransportError,
    AlreadyInCallError,
    InvalidParticipantError,
    CallNotFoundError,
)

__all__ = [
    "CallController",
    "CallSession",
    "CallFailure",
    "CallRole",
    "CallState",
    "CallView",
    "make_call_id",
    "CallServiceError",
    "FailureReason",
    "MediaAccessError",
    "SignalingWriteError",
    "InvalidRemoteDescriptionError",
    "IceCandidateError",
    "TransportError",
    "AlreadyInCallError",
    "InvalidParticipantError",
    "CallNotFoundError",
]
