"""
Call Session - state machine for one peer-to-peer call attempt.

Lifecycle:
    IDLE -> INITIATING -> NEGOTIATING -> ACTIVE -> ENDING -> ENDED
                 any state -> FAILED (media, signaling or transport failure)

The session owns the media handle, the peer transport, the signaling
subscription and the negotiation state. Snapshot decisions are made by
negotiation.reduce_snapshot(); this class executes the resulting effects.
Teardown runs exactly once, whichever path triggers it first.
"""
import asyncio
import logging
from datetime import datetime, UTC
from typing import Any, Callable, Dict, List, Optional, Sequence

from peercall.config.constants import DEFAULT_STUN_URL, NEGOTIATION_FIELDS
from peercall.schemas.call import CallRecord, CallStatus, SessionDescription
from peercall.services.metrics import (
    active_calls_gauge,
    calls_finished,
    calls_started,
    remote_candidates,
)
from peercall.services.protocols import (
    MediaConstraints,
    MediaHandle,
    MediaSource,
    PeerTransport,
    PeerTransportFactory,
    SignalingChannel,
    Unsubscribe,
)
from .exceptions import (
    CallServiceError,
    FailureReason,
    IceCandidateError,
    InvalidRemoteDescriptionError,
    MediaAccessError,
    SignalingWriteError,
    TransportError,
)
from .models import CallFailure, CallRole, CallState, CallView
from .negotiation import (
    AcceptOffer,
    ApplyAnswer,
    ApplyCandidate,
    Effect,
    NegotiationState,
    RemoteHangup,
    reduce_snapshot,
)
from .validators import make_call_id

logger = logging.getLogger(__name__)

CallListener = Callable[[CallView], None]


class CallSession:
    """
    Orchestrates media capture, the peer transport and the shared call
    record into a single call.

    Usage:
        session = CallSession("alice", "bob", CallRole.CALLER, channel, media, transports)
        await session.start()
        ...
        await session.end_call()
    """

    def __init__(
        self,
        self_id: str,
        counterpart_id: str,
        role: CallRole,
        signaling: SignalingChannel,
        media_source: MediaSource,
        transport_factory: PeerTransportFactory,
        ice_servers: Optional[Sequence[str]] = None,
        constraints: Optional[MediaConstraints] = None,
    ):
        self.call_id = make_call_id(self_id, counterpart_id)
        self.self_id = self_id
        self.counterpart_id = counterpart_id
        self.role = role

        self._signaling = signaling
        self._media_source = media_source
        self._transport_factory = transport_factory
        self._ice_servers = list(ice_servers or [DEFAULT_STUN_URL])
        self._constraints = constraints or MediaConstraints()

        self._state = CallState.IDLE
        if role is CallRole.CALLER:
            self._negotiation = NegotiationState.for_caller(self_id, counterpart_id)
        else:
            self._negotiation = NegotiationState.for_callee(self_id, counterpart_id)

        self._media: Optional[MediaHandle] = None
        self._transport: Optional[PeerTransport] = None
        self._unsubscribe: Optional[Unsubscribe] = None
        self._remote_tracks: List[Any] = []

        # Local candidates wait here until the record exists
        self._record_ready = False
        self._pending_candidates: List[Dict[str, Any]] = []

        self._snapshot_lock = asyncio.Lock()
        self._ending = False
        self._listeners: List[CallListener] = []
        self.failure: Optional[CallFailure] = None

    # === State ===

    @property
    def state(self) -> CallState:
        return self._state

    @property
    def is_finished(self) -> bool:
        return self._state.is_terminal

    @property
    def local_stream(self) -> Optional[MediaHandle]:
        if self._media is None or self._media.released:
            return None
        return self._media

    @property
    def remote_stream(self) -> Optional[tuple]:
        return tuple(self._remote_tracks) if self._remote_tracks else None

    def view(self) -> CallView:
        return CallView(
            call_id=self.call_id,
            state=self._state,
            role=self.role,
            counterpart_id=self.counterpart_id,
            local_stream=self.local_stream,
            remote_stream=self.remote_stream,
            failure=self.failure,
        )

    def add_listener(self, listener: CallListener) -> Callable[[], None]:
        """Register a callback for state/stream changes; returns a remover."""
        self._listeners.append(listener)

        def remove():
            if listener in self._listeners:
                self._listeners.remove(listener)

        return remove

    def _notify(self):
        view = self.view()
        for listener in list(self._listeners):
            try:
                listener(view)
            except Exception as e:
                logger.error(f"[Session] {self.call_id} listener error: {e}")

    def _set_state(self, state: CallState):
        if self._state is state:
            return
        logger.info(f"[Session] {self.call_id} {self._state.value} -> {state.value} ({self.role.value})")
        self._state = state
        self._notify()

    # === Start ===

    async def start(self) -> CallView:
        """
        Start the call in this session's role.

        Caller: acquire media, open the transport, publish the offer in a new
        record and watch for the answer. Callee: acquire media, open the
        transport and watch the record for the caller's offer.

        Failures do not raise; they end the session in FAILED with
        view().failure set.
        """
        if self._state is not CallState.IDLE:
            raise CallServiceError(f"Session {self.call_id} already started")

        calls_started.labels(role=self.role.value).inc()
        active_calls_gauge.inc()
        self._set_state(CallState.INITIATING)

        try:
            media = await self._media_source.acquire(self._constraints)
        except MediaAccessError as e:
            logger.error(f"[Session] {self.call_id} media unavailable: {e}")
            await self._fail(FailureReason.MEDIA_UNAVAILABLE, str(e))
            return self.view()

        if self._ending:
            # Hung up while waiting on the permission prompt
            self._media_source.release(media)
            return self.view()
        self._media = media
        self._notify()

        try:
            self._open_transport()
        except TransportError as e:
            logger.error(f"[Session] {self.call_id} could not open transport: {e}")
            await self._fail(FailureReason.TRANSPORT_FAILED, str(e))
            return self.view()

        self._set_state(CallState.NEGOTIATING)

        if self.role is CallRole.CALLER:
            if not await self._publish_offer():
                return self.view()

        await self._subscribe()
        return self.view()

    def _open_transport(self):
        transport = self._transport_factory.open(self._ice_servers)
        transport.on_remote_track = self._on_remote_track
        transport.on_ice_candidate = self._on_ice_candidate
        transport.on_connection_state_change = self._on_connection_state_change
        self._transport = transport
        transport.add_local_tracks(self._media)

    async def _publish_offer(self) -> bool:
        """Create the offer and write a fresh record. Returns False if the session is over."""
        transport = self._transport
        try:
            offer = await transport.create_offer()
            local = await transport.set_local_description(offer)
        except TransportError as e:
            logger.error(f"[Session] {self.call_id} could not create offer: {e}")
            await self._fail(FailureReason.NEGOTIATION_FAILED, str(e))
            return False

        if self._ending:
            return False

        record = CallRecord(
            call_id=self.call_id,
            participants=[self.self_id, self.counterpart_id],
            created_by=self.self_id,
            offer=local,
            status=CallStatus.PENDING,
            created_at=datetime.now(UTC),
        )
        try:
            await self._signaling.create(
                self.call_id, record.model_dump(mode="json", by_alias=True, exclude_none=True)
            )
        except SignalingWriteError as e:
            logger.error(f"[Session] {self.call_id} could not write offer: {e}")
            await self._fail(FailureReason.SIGNALING_FAILED, str(e))
            return False

        self._record_ready = True
        if self._ending:
            # Torn down while the record write was in flight
            await self._write_ended()
            return False

        logger.info(f"[Session] {self.call_id} offer published by {self.self_id}")
        await self._flush_pending_candidates()
        return not self._ending

    async def _subscribe(self):
        unsubscribe = await self._signaling.subscribe(
            self.call_id, self._on_snapshot, on_error=self._on_signaling_lost
        )
        if self._ending:
            # The initial snapshot may already have ended the call
            await unsubscribe()
            return
        self._unsubscribe = unsubscribe
        logger.info(f"[Session] {self.call_id} watching call record")

    # === Signaling snapshots ===

    async def _on_snapshot(self, record: Optional[CallRecord]):
        async with self._snapshot_lock:
            if self._ending:
                return
            self._negotiation, effects = reduce_snapshot(self._negotiation, record)
            for effect in effects:
                if self._ending:
                    return
                await self._execute(effect)

    async def _on_signaling_lost(self, error: Exception):
        if self._ending:
            return
        logger.error(f"[Session] {self.call_id} lost the call record subscription: {error}")
        await self._fail(FailureReason.SIGNALING_FAILED, f"Signaling subscription lost: {error}")

    async def _execute(self, effect: Effect):
        if isinstance(effect, AcceptOffer):
            await self._accept_offer(effect.offer)
        elif isinstance(effect, ApplyAnswer):
            await self._apply_answer(effect.answer)
        elif isinstance(effect, ApplyCandidate):
            await self._apply_candidate(effect.candidate)
        elif isinstance(effect, RemoteHangup):
            logger.info(f"[Session] {self.call_id} ended by {self.counterpart_id}")
            await self._teardown(outcome="remote_hangup", write_ended=False)

    async def _accept_offer(self, offer: SessionDescription):
        transport = self._transport
        self._record_ready = True
        if transport.has_remote_description:
            logger.warning(f"[Session] {self.call_id} remote description already set, ignoring offer")
            return

        try:
            await transport.set_remote_description(offer)
            answer = await transport.create_answer()
            local = await transport.set_local_description(answer)
        except InvalidRemoteDescriptionError as e:
            logger.warning(f"[Session] {self.call_id} ignoring offer: {e}")
            return
        except TransportError as e:
            logger.error(f"[Session] {self.call_id} could not answer: {e}")
            await self._fail(FailureReason.NEGOTIATION_FAILED, str(e))
            return

        if self._ending:
            return

        try:
            await self._signaling.update(self.call_id, {
                "answer": local.model_dump(mode="json"),
                "status": CallStatus.ACTIVE.value,
            })
        except SignalingWriteError as e:
            logger.error(f"[Session] {self.call_id} could not write answer: {e}")
            await self._fail(FailureReason.SIGNALING_FAILED, str(e))
            return

        logger.info(f"[Session] {self.call_id} answer published by {self.self_id}")
        await self._flush_pending_candidates()

    async def _apply_answer(self, answer: SessionDescription):
        transport = self._transport
        if transport.has_remote_description:
            logger.warning(f"[Session] {self.call_id} remote description already set, ignoring answer")
            return

        try:
            await transport.set_remote_description(answer)
        except InvalidRemoteDescriptionError as e:
            logger.warning(f"[Session] {self.call_id} ignoring answer: {e}")
            return
        except TransportError as e:
            logger.error(f"[Session] {self.call_id} could not apply answer: {e}")
            await self._fail(FailureReason.NEGOTIATION_FAILED, str(e))
            return

        logger.info(f"[Session] {self.call_id} answer applied")

    async def _apply_candidate(self, candidate: Dict[str, Any]):
        try:
            await self._transport.add_ice_candidate(candidate)
        except IceCandidateError as e:
            remote_candidates.labels(result="rejected").inc()
            logger.warning(f"[Session] {self.call_id} skipping candidate: {e}")
            return
        remote_candidates.labels(result="applied").inc()

    # === Transport events ===

    async def _on_ice_candidate(self, candidate: Dict[str, Any]):
        if self._ending:
            return
        if not self._record_ready:
            self._pending_candidates.append(candidate)
            return
        await self._relay_candidate(candidate)

    async def _flush_pending_candidates(self):
        pending, self._pending_candidates = self._pending_candidates, []
        for candidate in pending:
            if self._ending:
                return
            await self._relay_candidate(candidate)

    async def _relay_candidate(self, candidate: Dict[str, Any]):
        try:
            await self._signaling.append_candidate(self.call_id, self.self_id, candidate)
        except SignalingWriteError as e:
            # The next candidate write retries the channel
            logger.warning(f"[Session] {self.call_id} could not relay candidate: {e}")

    async def _on_remote_track(self, track: Any):
        if self._ending:
            return
        self._remote_tracks.append(track)
        if self._state is CallState.NEGOTIATING:
            self._set_state(CallState.ACTIVE)
        else:
            self._notify()

    async def _on_connection_state_change(self, state: str):
        if self._ending:
            return
        logger.info(f"[Session] {self.call_id} transport state: {state}")
        if state == "failed":
            await self._fail(FailureReason.TRANSPORT_FAILED, "Peer connection failed")

    # === Teardown ===

    async def end_call(self) -> CallView:
        """Hang up locally. Safe to call repeatedly and after a remote hangup."""
        if self._state is CallState.IDLE:
            self._ending = True
            self._set_state(CallState.ENDED)
            return self.view()
        await self._teardown(outcome="local_hangup", write_ended=True)
        return self.view()

    async def _fail(self, reason: FailureReason, message: str):
        if self._ending:
            return
        self.failure = CallFailure(reason=reason, message=message)
        # Only tell the peer if there is a record for it to watch
        await self._teardown(outcome="failed", write_ended=self._record_ready)

    async def _teardown(self, outcome: str, write_ended: bool):
        if self._ending:
            return
        self._ending = True
        self._set_state(CallState.ENDING)

        unsubscribe, self._unsubscribe = self._unsubscribe, None
        if unsubscribe is not None:
            try:
                await unsubscribe()
            except Exception as e:
                logger.warning(f"[Session] {self.call_id} unsubscribe failed: {e}")

        if write_ended and self._record_ready:
            await self._write_ended()

        transport, self._transport = self._transport, None
        if transport is not None:
            try:
                await transport.close()
            except Exception as e:
                logger.warning(f"[Session] {self.call_id} transport close failed: {e}")

        if self._media is not None:
            self._media_source.release(self._media)

        self._negotiation = NegotiationState(
            self_id=self.self_id, remote_id=self.counterpart_id, role=self.role
        )
        self._pending_candidates = []
        self._remote_tracks = []

        calls_finished.labels(outcome=outcome).inc()
        active_calls_gauge.dec()
        self._set_state(CallState.FAILED if self.failure else CallState.ENDED)
        logger.info(f"[Session] {self.call_id} torn down ({outcome})")

    async def _write_ended(self):
        try:
            await self._signaling.update(self.call_id, {
                "status": CallStatus.ENDED.value,
                "endedAt": datetime.now(UTC).isoformat(),
            })
            await self._signaling.delete_fields(self.call_id, NEGOTIATION_FIELDS)
        except SignalingWriteError as e:
            logger.error(f"[Session] {self.call_id} could not mark call ended: {e}")
