"""
Media module.

Provides local camera/microphone capture for call sessions.
"""
from .source import CapturedMedia, DeviceMediaSource

__all__ = ["CapturedMedia", "DeviceMediaSource"]
