"""
Signaling module.

Provides the shared call record store used to exchange offers, answers
and ICE candidates between the two peers.
"""
from .redis_channel import RedisSignalingChannel

__all__ = ["RedisSignalingChannel"]
