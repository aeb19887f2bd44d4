"""
Snapshot Negotiation - pure offer/answer/candidate decisions.

Each signaling snapshot is reduced against the session's negotiation state:

    (previous state, snapshot) -> (new state, effects)

No I/O happens here. CallSession executes the returned effects in order,
which keeps the protocol rules unit-testable without a network:

- The caller (record.created_by == self) only ever applies the answer.
- The callee only ever applies the offer, and only from a live record.
- The remote description is applied at most once per session.
- Remote candidates are applied at most once each, and only after the
  remote description, since snapshots re-deliver the whole list.
- status == ended on a record seen live is a remote hangup.
"""
from dataclasses import dataclass, field, replace
from typing import Any, Dict, List, Optional, Tuple, Union

from peercall.schemas.call import CallRecord, CallStatus, SessionDescription
from peercall.services.core.deduplicator import CandidateDeduplicator
from .models import CallRole


@dataclass(frozen=True)
class AcceptOffer:
    """Set the remote offer, create and publish an answer."""
    offer: SessionDescription


@dataclass(frozen=True)
class ApplyAnswer:
    """Set the remote answer on the offering side."""
    answer: SessionDescription


@dataclass(frozen=True)
class ApplyCandidate:
    """Hand one remote ICE candidate to the transport."""
    candidate: Dict[str, Any]
    fingerprint: str


@dataclass(frozen=True)
class RemoteHangup:
    """The counterpart ended the call."""
    pass


Effect = Union[AcceptOffer, ApplyAnswer, ApplyCandidate, RemoteHangup]


@dataclass(frozen=True)
class NegotiationState:
    """
    Per-session negotiation memory.

    Attributes:
        self_id: Local participant
        remote_id: Counterpart
        role: Offer side (caller) or answer side (callee)
        remote_description_applied: Set as soon as an AcceptOffer/ApplyAnswer
            effect is emitted, so a later snapshot never emits another one
        seen_live: The record was observed pending/active during this session
        remote_ended: A RemoteHangup was emitted
        candidates: Fingerprints of remote candidates already emitted
    """
    self_id: str
    remote_id: str
    role: CallRole
    remote_description_applied: bool = False
    seen_live: bool = False
    remote_ended: bool = False
    candidates: CandidateDeduplicator = field(default_factory=CandidateDeduplicator)

    @classmethod
    def for_caller(cls, self_id: str, remote_id: str) -> "NegotiationState":
        # The caller writes the record itself, so it is live from the start
        return cls(self_id=self_id, remote_id=remote_id, role=CallRole.CALLER, seen_live=True)

    @classmethod
    def for_callee(cls, self_id: str, remote_id: str) -> "NegotiationState":
        return cls(self_id=self_id, remote_id=remote_id, role=CallRole.CALLEE)


def _is_live(record: CallRecord) -> bool:
    return record.status in (CallStatus.PENDING, CallStatus.ACTIVE)


def _record_matches_role(state: NegotiationState, record: CallRecord) -> bool:
    if state.role is CallRole.CALLER:
        return record.is_caller(state.self_id)
    return record.created_by == state.remote_id


def reduce_snapshot(
    state: NegotiationState,
    record: Optional[CallRecord],
) -> Tuple[NegotiationState, List[Effect]]:
    """
    Decide what a snapshot means for this session.

    Args:
        state: Negotiation state before the snapshot
        record: Full current call record, or None if it does not exist (yet)

    Returns:
        Tuple of (new state, effects to execute in order)
    """
    if record is None or state.remote_ended:
        return state, []

    effects: List[Effect] = []

    if record.status is CallStatus.ENDED:
        if state.seen_live:
            return replace(state, remote_ended=True), [RemoteHangup()]
        # Left over from an earlier call on the same id
        return state, []

    if not _record_matches_role(state, record):
        # A record written by someone else for this pair (e.g. both sides
        # dialled at once); never treat it as our half of the protocol
        return state, []

    if not state.seen_live and _is_live(record):
        state = replace(state, seen_live=True)

    if not state.remote_description_applied:
        if state.role is CallRole.CALLER and record.answer is not None:
            effects.append(ApplyAnswer(answer=record.answer))
            state = replace(state, remote_description_applied=True)
        elif state.role is CallRole.CALLEE and record.offer is not None:
            effects.append(AcceptOffer(offer=record.offer))
            state = replace(state, remote_description_applied=True)

    if state.remote_description_applied:
        dedup, fresh = state.candidates.partition(record.candidates_from(state.remote_id))
        if fresh:
            state = replace(state, candidates=dedup)
            effects.extend(
                ApplyCandidate(candidate=candidate, fingerprint=fingerprint)
                for fingerprint, candidate in fresh
            )

    return state, effects
