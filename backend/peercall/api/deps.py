from typing import Optional
import logging

from peercall.config.settings import settings
from peercall.services.call import CallController
from peercall.services.media import DeviceMediaSource
from peercall.services.rtc import AiortcTransportFactory
from peercall.services.signaling import RedisSignalingChannel

logger = logging.getLogger(__name__)

_controller: Optional[CallController] = None


def build_call_controller() -> CallController:
    """
    Wire a controller for the configured local user from settings.
    """
    if not settings.USER_ID:
        raise RuntimeError("USER_ID must be configured to place or answer calls")

    return CallController(
        self_id=settings.USER_ID,
        signaling=RedisSignalingChannel(),
        media_source=DeviceMediaSource.from_settings(settings),
        transport_factory=AiortcTransportFactory.from_settings(settings),
        ice_servers=settings.ICE_SERVERS,
    )


def get_call_controller() -> CallController:
    """
    Dependency for the process-wide call controller.
    """
    global _controller
    if _controller is None:
        _controller = build_call_controller()
        logger.info(f"[API] Call controller ready for user {_controller.self_id}")
    return _controller


async def shutdown_call_controller():
    global _controller
    if _controller is not None:
        await _controller.shutdown()
        _controller = None
