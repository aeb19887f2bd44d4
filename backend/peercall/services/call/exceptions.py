"""
Call Service Exceptions

Custom exceptions for call setup, negotiation and signaling errors.
"""
from enum import Enum


class FailureReason(str, Enum):
    """Reason code surfaced to the UI when a call fails"""
    MEDIA_UNAVAILABLE = "media_unavailable"
    SIGNALING_FAILED = "signaling_failed"
    TRANSPORT_FAILED = "transport_failed"
    NEGOTIATION_FAILED = "negotiation_failed"


class CallServiceError(Exception):
    """Base exception for call service errors"""
    pass


class MediaAccessError(CallServiceError):
    """Raised when camera/microphone permission is denied or hardware is absent"""
    pass


class SignalingWriteError(CallServiceError):
    """Raised when a write to the shared call record fails"""
    pass


class InvalidRemoteDescriptionError(CallServiceError):
    """Raised when a remote description is set twice or on the wrong side"""
    pass


class IceCandidateError(CallServiceError):
    """Raised when a remote ICE candidate is malformed or arrives too late"""
    pass


class TransportError(CallServiceError):
    """Raised for unrecoverable peer connection failures"""
    pass


class AlreadyInCallError(CallServiceError):
    """Raised when a call is started while another one is in progress"""
    pass


class InvalidParticipantError(CallServiceError):
    """Raised when participant ids cannot form a call"""
    pass


class CallNotFoundError(CallServiceError):
    """Raised when there is no call to act on"""
    pass
