"""
RTC module.

Provides the aiortc-backed peer transport used by call sessions.
"""
from .transport import AiortcPeerTransport, AiortcTransportFactory

__all__ = ["AiortcPeerTransport", "AiortcTransportFactory"]
