"""
Protocol definitions for the call session collaborators.

This module defines interfaces (Python Protocols) that allow:
- Swapping implementations (e.g., Redis → another document store)
- Testing the call state machine without a network, camera or peer
- Clear contracts between the session and its collaborators

Usage:
    from peercall.services.protocols import SignalingChannel

    async def hang_up(channel: SignalingChannel, call_id: str):
        await channel.update(call_id, {"status": "ended"})
        await channel.delete_fields(call_id, ["offer", "answer", "candidates"])
"""

from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional, Protocol, Sequence

from peercall.schemas.call import CallRecord, SessionDescription


SnapshotCallback = Callable[[Optional[CallRecord]], Awaitable[None]]
Unsubscribe = Callable[[], Awaitable[None]]
SubscriptionErrorCallback = Callable[[Exception], Awaitable[None]]


class SignalingChannel(Protocol):
    """
    Interface for the shared call record store.

    Writes are field-scoped merges; a snapshot callback always receives the
    full current record, never a diff.
    """

    async def create(self, call_id: str, initial_fields: Dict[str, Any]) -> None:
        """Write a fresh record, replacing whatever a previous call left behind."""
        ...

    async def update(self, call_id: str, partial_fields: Dict[str, Any]) -> None:
        """Merge fields into an existing record."""
        ...

    async def append_candidate(
        self, call_id: str, participant_id: str, candidate: Dict[str, Any]
    ) -> None:
        """Union-append a candidate to candidates[participant_id]."""
        ...

    async def delete_fields(self, call_id: str, field_names: Sequence[str]) -> None:
        """Remove fields from a record."""
        ...

    async def get(self, call_id: str) -> Optional[CallRecord]:
        """Read the current record, or None if it does not exist."""
        ...

    async def subscribe(
        self,
        call_id: str,
        on_snapshot: SnapshotCallback,
        on_error: Optional[SubscriptionErrorCallback] = None,
    ) -> Unsubscribe:
        """
        Watch a record for changes.

        Args:
            call_id: Record to watch
            on_snapshot: Awaited with the full record after every change,
                         and once immediately with the current state
            on_error: Awaited once if the subscription is lost for good;
                      no snapshot is delivered after it

        Returns:
            Idempotent coroutine function that stops the subscription
        """
        ...


@dataclass(frozen=True)
class MediaConstraints:
    audio: bool = True
    video: bool = True


class MediaHandle(Protocol):
    """A captured local stream; release() stops every track and is idempotent."""

    @property
    def tracks(self) -> List[Any]:
        ...

    @property
    def released(self) -> bool:
        ...

    def release(self) -> None:
        ...


class MediaSource(Protocol):
    """Interface for local camera/microphone capture."""

    async def acquire(self, constraints: MediaConstraints) -> MediaHandle:
        """
        Start capturing.

        Raises:
            MediaAccessError if the device is missing or permission is denied
        """
        ...

    def release(self, handle: Optional[MediaHandle]) -> None:
        """Stop all tracks of handle; safe on None or an already released handle."""
        ...


class PeerTransport(Protocol):
    """
    One peer connection per call attempt.

    The owner assigns the event hooks before negotiating. Hooks never fire
    after close().
    """

    on_remote_track: Optional[Callable[[Any], Awaitable[None]]]
    on_ice_candidate: Optional[Callable[[Dict[str, Any]], Awaitable[None]]]
    on_connection_state_change: Optional[Callable[[str], Awaitable[None]]]

    @property
    def has_remote_description(self) -> bool:
        ...

    @property
    def connection_state(self) -> str:
        ...

    def add_local_tracks(self, media: MediaHandle) -> None:
        ...

    async def create_offer(self) -> SessionDescription:
        ...

    async def create_answer(self) -> SessionDescription:
        """Only valid once a remote offer has been set."""
        ...

    async def set_local_description(self, description: SessionDescription) -> SessionDescription:
        """Apply description locally and return the effective local description."""
        ...

    async def set_remote_description(self, description: SessionDescription) -> None:
        """
        Raises:
            InvalidRemoteDescriptionError if a remote description is already set
        """
        ...

    async def add_ice_candidate(self, candidate: Dict[str, Any]) -> None:
        """
        Raises:
            IceCandidateError for a malformed or unusable candidate
        """
        ...

    async def close(self) -> None:
        ...


class PeerTransportFactory(Protocol):
    """Creates transports bound to a list of STUN/TURN server URLs; no I/O happens on open."""

    def open(self, ice_servers: Sequence[str]) -> PeerTransport:
        ...
