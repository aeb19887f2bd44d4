"""In-memory stand-ins for the signaling channel, media source and peer transport."""
import asyncio
import copy
from typing import Any, Dict, List, Optional, Sequence

from peercall.schemas.call import CallRecord, SessionDescription
from peercall.services.call.exceptions import (
    IceCandidateError,
    InvalidRemoteDescriptionError,
    MediaAccessError,
    SignalingWriteError,
    TransportError,
)
from peercall.services.core.deduplicator import candidate_fingerprint


def candidate(foundation: str, port: int, mid: str = "0", index: int = 0) -> Dict[str, Any]:
    return {
        "candidate": f"candidate:{foundation} 1 udp 2130706431 192.168.1.10 {port} typ host",
        "sdpMid": mid,
        "sdpMLineIndex": index,
    }


async def wait_until(predicate, timeout: float = 2.0, interval: float = 0.01):
    """Poll predicate() until it holds or the timeout expires."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met before timeout")
        await asyncio.sleep(interval)


# =============================================================================
# Signaling
# =============================================================================

class _Subscriber:
    def __init__(self, channel: "InMemorySignalingChannel", call_id: str, on_snapshot, on_error=None):
        self.channel = channel
        self.call_id = call_id
        self.on_snapshot = on_snapshot
        self.on_error = on_error
        self.queue: asyncio.Queue = asyncio.Queue()
        self.busy = False
        self.closed = False
        self.task = asyncio.create_task(self._run())

    async def _run(self):
        while not self.closed:
            item = await self.queue.get()
            self.busy = True
            try:
                if isinstance(item, Exception):
                    self.closed = True
                    self.channel._subscribers.remove(self)
                    if self.on_error is not None:
                        await self.on_error(item)
                elif not self.closed:
                    await self.on_snapshot(await self.channel.get(self.call_id))
            finally:
                self.busy = False

    @property
    def idle(self) -> bool:
        return not self.busy and (self.closed or self.queue.empty())

    async def close(self):
        if self.closed:
            return
        self.closed = True
        self.channel._subscribers.remove(self)
        if self.task is not asyncio.current_task():
            self.task.cancel()
            await asyncio.wait({self.task})


class InMemorySignalingChannel:
    """
    Shared call record store with merge writes and asynchronous full-record
    snapshots, delivered in order per subscriber like a document database.
    """

    def __init__(self):
        self.records: Dict[str, Dict[str, Any]] = {}
        self.writes: List[tuple] = []
        self.fail_ops: set = set()
        self._subscribers: List[_Subscriber] = []
        self._all_subscribers: List[_Subscriber] = []

    def _check(self, op: str, call_id: str):
        if op in self.fail_ops:
            raise SignalingWriteError(f"{op} on {call_id} failed")

    def _notify(self, call_id: str):
        for subscriber in self._subscribers:
            if subscriber.call_id == call_id:
                subscriber.queue.put_nowait(call_id)

    async def create(self, call_id: str, initial_fields: Dict[str, Any]) -> None:
        self._check("create", call_id)
        fields = copy.deepcopy(initial_fields)
        fields.setdefault("callId", call_id)
        fields.setdefault("candidates", {})
        self.records[call_id] = fields
        self.writes.append(("create", call_id, copy.deepcopy(initial_fields)))
        self._notify(call_id)

    async def update(self, call_id: str, partial_fields: Dict[str, Any]) -> None:
        self._check("update", call_id)
        if call_id not in self.records:
            raise SignalingWriteError(f"No record {call_id}")
        self.records[call_id].update(copy.deepcopy(partial_fields))
        self.writes.append(("update", call_id, copy.deepcopy(partial_fields)))
        self._notify(call_id)

    async def append_candidate(self, call_id: str, participant_id: str, candidate: Dict[str, Any]) -> None:
        self._check("append_candidate", call_id)
        if call_id not in self.records:
            raise SignalingWriteError(f"No record {call_id}")
        candidates = self.records[call_id].setdefault("candidates", {}).setdefault(participant_id, [])
        fingerprints = {candidate_fingerprint(c) for c in candidates}
        if candidate_fingerprint(candidate) not in fingerprints:
            candidates.append(copy.deepcopy(candidate))
        self.writes.append(("append_candidate", call_id, {participant_id: candidate}))
        self._notify(call_id)

    async def delete_fields(self, call_id: str, field_names: Sequence[str]) -> None:
        self._check("delete_fields", call_id)
        record = self.records.get(call_id, {})
        for name in field_names:
            record.pop(name, None)
        self.writes.append(("delete_fields", call_id, list(field_names)))
        self._notify(call_id)

    async def get(self, call_id: str) -> Optional[CallRecord]:
        record = self.records.get(call_id)
        if record is None:
            return None
        return CallRecord.model_validate(copy.deepcopy(record))

    async def subscribe(self, call_id: str, on_snapshot, on_error=None):
        subscriber = _Subscriber(self, call_id, on_snapshot, on_error)
        self._subscribers.append(subscriber)
        self._all_subscribers.append(subscriber)
        subscriber.queue.put_nowait(call_id)
        return subscriber.close

    async def redeliver(self, call_id: str, times: int = 1):
        """Push the current snapshot again, as a flaky listener would."""
        for _ in range(times):
            self._notify(call_id)

    def lose_subscriptions(self, call_id: str, error: Exception):
        """Break every subscription to call_id, as a dropped connection would."""
        for subscriber in list(self._subscribers):
            if subscriber.call_id == call_id:
                subscriber.queue.put_nowait(error)

    def subscriber_count(self, call_id: str) -> int:
        return sum(1 for s in self._subscribers if s.call_id == call_id)

    def writes_of(self, op: str) -> List[tuple]:
        return [w for w in self.writes if w[0] == op]

    async def settle(self, timeout: float = 2.0):
        """Wait until every subscriber has processed its queued snapshots."""
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while True:
            # Let freshly scheduled tasks run before checking
            for _ in range(5):
                await asyncio.sleep(0)
            if all(s.idle for s in self._all_subscribers):
                return
            if loop.time() > deadline:
                raise AssertionError("signaling channel did not settle")
            await asyncio.sleep(0.001)


# =============================================================================
# Media
# =============================================================================

class FakeMediaHandle:
    def __init__(self):
        self.tracks = ["audio-track", "video-track"]
        self.released = False
        self.stop_count = 0

    def release(self):
        if self.released:
            return
        self.released = True
        self.stop_count += 1


class FakeMediaSource:
    def __init__(self, fail: bool = False, gate: Optional[asyncio.Event] = None):
        self.fail = fail
        self.gate = gate
        self.handles: List[FakeMediaHandle] = []
        self.acquire_calls = 0
        self.release_calls = 0

    async def acquire(self, constraints):
        self.acquire_calls += 1
        if self.gate is not None:
            await self.gate.wait()
        if self.fail:
            raise MediaAccessError("Permission denied")
        handle = FakeMediaHandle()
        self.handles.append(handle)
        return handle

    def release(self, handle):
        self.release_calls += 1
        if handle is not None:
            handle.release()


# =============================================================================
# Transport
# =============================================================================

class FakeTransport:
    def __init__(self, name: str, local_candidates: Sequence[Dict[str, Any]] = (), reject: Sequence[str] = ()):
        self.name = name
        self.local_candidates = list(local_candidates)
        self.reject = set(reject)

        self.on_remote_track = None
        self.on_ice_candidate = None
        self.on_connection_state_change = None

        self.local_tracks: List[Any] = []
        self.local_description: Optional[SessionDescription] = None
        self.remote_description: Optional[SessionDescription] = None
        self.set_remote_calls: List[SessionDescription] = []
        self.added_candidates: List[Dict[str, Any]] = []
        self.closed = False
        self.close_calls = 0
        self.fail_create = False

    @property
    def has_remote_description(self) -> bool:
        return self.remote_description is not None

    @property
    def connection_state(self) -> str:
        return "closed" if self.closed else "new"

    def add_local_tracks(self, media):
        self.local_tracks.extend(media.tracks)

    async def create_offer(self) -> SessionDescription:
        if self.fail_create:
            raise TransportError("offer failed")
        return SessionDescription(sdp=f"v=0 offer from {self.name}", type="offer")

    async def create_answer(self) -> SessionDescription:
        if self.remote_description is None:
            raise TransportError("no remote offer")
        return SessionDescription(sdp=f"v=0 answer from {self.name}", type="answer")

    async def set_local_description(self, description: SessionDescription) -> SessionDescription:
        self.local_description = description
        for c in self.local_candidates:
            if self.closed or self.on_ice_candidate is None:
                break
            await self.on_ice_candidate(c)
        return description

    async def set_remote_description(self, description: SessionDescription) -> None:
        self.set_remote_calls.append(description)
        if self.remote_description is not None:
            raise InvalidRemoteDescriptionError("Remote description already set")
        self.remote_description = description

    async def add_ice_candidate(self, candidate: Dict[str, Any]) -> None:
        if self.closed:
            raise IceCandidateError("closed")
        if candidate.get("candidate") in self.reject:
            raise IceCandidateError("malformed")
        self.added_candidates.append(candidate)

    async def close(self) -> None:
        self.close_calls += 1
        self.closed = True
        self.on_remote_track = None
        self.on_ice_candidate = None
        self.on_connection_state_change = None

    async def emit_track(self, track: Any):
        if self.on_remote_track is not None:
            await self.on_remote_track(track)

    async def emit_state(self, state: str):
        if self.on_connection_state_change is not None:
            await self.on_connection_state_change(state)


class FakeTransportFactory:
    def __init__(self, local_candidates: Sequence[Dict[str, Any]] = (), reject: Sequence[str] = ()):
        self.local_candidates = list(local_candidates)
        self.reject = list(reject)
        self.transports: List[FakeTransport] = []
        self.ice_servers: List[Sequence[str]] = []

    def open(self, ice_servers):
        self.ice_servers.append(list(ice_servers))
        transport = FakeTransport(f"t{len(self.transports)}", self.local_candidates, self.reject)
        self.transports.append(transport)
        return transport

    @property
    def last(self) -> FakeTransport:
        return self.transports[-1]
