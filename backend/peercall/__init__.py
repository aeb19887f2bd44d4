"""Peer-to-peer video call signaling over a shared call record."""

__version__ = "1.0.0"
