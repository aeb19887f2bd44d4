"""
Call Controller - the UI-facing entry point.

Holds at most one CallSession at a time, forwards user intent
(start/accept/end) and republishes session views to subscribers.
It owns no negotiation logic.
"""
import asyncio
import logging
from typing import Callable, List, Optional, Sequence

from peercall.services.protocols import (
    MediaConstraints,
    MediaSource,
    PeerTransportFactory,
    SignalingChannel,
)
from .exceptions import AlreadyInCallError, CallNotFoundError
from .models import IDLE_VIEW, CallRole, CallView
from .session import CallListener, CallSession
from .validators import validate_participants

logger = logging.getLogger(__name__)


class CallController:
    """
    Binds call sessions to a presentation layer.

    Subscribers receive a CallView (state, local/remote stream, failure)
    on every change of the current session.
    """

    def __init__(
        self,
        self_id: str,
        signaling: SignalingChannel,
        media_source: MediaSource,
        transport_factory: PeerTransportFactory,
        ice_servers: Optional[Sequence[str]] = None,
        constraints: Optional[MediaConstraints] = None,
    ):
        self.self_id = self_id
        self._signaling = signaling
        self._media_source = media_source
        self._transport_factory = transport_factory
        self._ice_servers = ice_servers
        self._constraints = constraints

        self._session: Optional[CallSession] = None
        self._subscribers: List[CallListener] = []
        self._lock = asyncio.Lock()

    @property
    def session(self) -> Optional[CallSession]:
        return self._session

    @property
    def current(self) -> CallView:
        if self._session is None:
            return IDLE_VIEW
        return self._session.view()

    def subscribe(self, listener: CallListener) -> Callable[[], None]:
        """Register a listener for call views; returns an unsubscribe function."""
        self._subscribers.append(listener)

        def unsubscribe():
            if listener in self._subscribers:
                self._subscribers.remove(listener)

        return unsubscribe

    def _publish(self, view: CallView):
        for listener in list(self._subscribers):
            try:
                listener(view)
            except Exception as e:
                logger.error(f"[Controller] subscriber error: {e}")

    async def start_call(self, counterpart_id: str) -> CallView:
        """Call counterpart_id; this side writes the offer."""
        return await self._open_session(counterpart_id, CallRole.CALLER)

    async def accept_call(self, counterpart_id: str) -> CallView:
        """Answer a call placed by counterpart_id."""
        return await self._open_session(counterpart_id, CallRole.CALLEE)

    async def _open_session(self, counterpart_id: str, role: CallRole) -> CallView:
        validate_participants(self.self_id, counterpart_id)

        async with self._lock:
            if self._session is not None and not self._session.is_finished:
                raise AlreadyInCallError(
                    f"Already in call {self._session.call_id} with {self._session.counterpart_id}"
                )

            session = CallSession(
                self_id=self.self_id,
                counterpart_id=counterpart_id,
                role=role,
                signaling=self._signaling,
                media_source=self._media_source,
                transport_factory=self._transport_factory,
                ice_servers=self._ice_servers,
                constraints=self._constraints,
            )
            session.add_listener(self._publish)
            self._session = session

        logger.info(f"[Controller] {self.self_id} opening {role.value} session {session.call_id}")
        return await session.start()

    async def end_call(self) -> CallView:
        """Hang up the current call."""
        session = self._session
        if session is None:
            raise CallNotFoundError("No call in progress")
        return await session.end_call()

    async def shutdown(self):
        """End whatever call is in progress (application shutdown)."""
        session = self._session
        if session is not None and not session.is_finished:
            await session.end_call()
