"""
Deduplication Utilities - structural deduplication of ICE candidates.

Every signaling snapshot carries the whole candidate list of the remote
participant, so the same candidate is observed many times. The deduplicator
keeps the fingerprints of the candidates a session has already applied.

Usage:
    from peercall.services.core.deduplicator import CandidateDeduplicator

    dedup = CandidateDeduplicator()
    dedup, fresh = dedup.partition(record.candidates_from(remote_id))
    for fingerprint, candidate in fresh:
        await transport.add_ice_candidate(candidate)
"""

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, FrozenSet, Iterable, List, Tuple

logger = logging.getLogger(__name__)


def candidate_fingerprint(candidate: Dict[str, Any]) -> str:
    """
    Stable serialization of a candidate.

    Key order does not matter, so two structurally equal candidates
    always share a fingerprint.
    """
    return json.dumps(candidate, sort_keys=True, separators=(",", ":"))


@dataclass(frozen=True)
class CandidateDeduplicator:
    """
    Immutable set of applied candidate fingerprints.

    Scoped to one call session and discarded on teardown; it is never
    attached to the transport.

    Attributes:
        seen: Fingerprints of candidates already handed to the transport
    """

    seen: FrozenSet[str] = field(default_factory=frozenset)

    def is_duplicate(self, candidate: Dict[str, Any]) -> bool:
        return candidate_fingerprint(candidate) in self.seen

    def partition(
        self, candidates: Iterable[Dict[str, Any]]
    ) -> Tuple["CandidateDeduplicator", List[Tuple[str, Dict[str, Any]]]]:
        """
        Split a snapshot's candidate list into not-yet-applied candidates.

        Duplicates within the list itself are dropped as well. Empty
        entries are skipped.

        Args:
            candidates: Full candidate list from a snapshot

        Returns:
            Tuple of (deduplicator including the fresh fingerprints,
            list of (fingerprint, candidate) in snapshot order)
        """
        seen = set(self.seen)
        fresh: List[Tuple[str, Dict[str, Any]]] = []

        for candidate in candidates:
            if not candidate:
                continue
            fingerprint = candidate_fingerprint(candidate)
            if fingerprint in seen:
                continue
            seen.add(fingerprint)
            fresh.append((fingerprint, candidate))

        if not fresh:
            return self, fresh

        logger.debug(f"{len(fresh)} new candidate(s), {len(seen)} tracked")
        return CandidateDeduplicator(seen=frozenset(seen)), fresh
