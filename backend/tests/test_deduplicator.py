from peercall.services.core import CandidateDeduplicator, candidate_fingerprint
from tests.helpers import candidate


def test_fingerprint_ignores_key_order():
    a = {"candidate": "candidate:1", "sdpMid": "0", "sdpMLineIndex": 0}
    b = {"sdpMLineIndex": 0, "candidate": "candidate:1", "sdpMid": "0"}
    assert candidate_fingerprint(a) == candidate_fingerprint(b)


def test_partition_returns_only_unseen_candidates():
    c1, c2 = candidate("x1", 1000), candidate("x2", 2000)

    dedup, fresh = CandidateDeduplicator().partition([c1])
    assert [c for _, c in fresh] == [c1]

    dedup, fresh = dedup.partition([c1, c2])
    assert [c for _, c in fresh] == [c2]
    assert dedup.is_duplicate(c1) and dedup.is_duplicate(c2)


def test_partition_drops_duplicates_within_one_list():
    c1 = candidate("x1", 1000)
    _, fresh = CandidateDeduplicator().partition([c1, dict(c1), {}])
    assert len(fresh) == 1


def test_partition_without_new_candidates_keeps_instance():
    c1 = candidate("x1", 1000)
    dedup, _ = CandidateDeduplicator().partition([c1])
    same, fresh = dedup.partition([c1])
    assert same is dedup
    assert fresh == []


def test_deduplicator_is_immutable():
    original = CandidateDeduplicator()
    original.partition([candidate("x1", 1000)])
    assert original.seen == frozenset()
