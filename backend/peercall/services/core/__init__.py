"""
Core Infrastructure Module

This module contains shared infrastructure components used across the application:
- CandidateDeduplicator: structural deduplication of ICE candidates

Usage:
    from peercall.services.core import CandidateDeduplicator, candidate_fingerprint
"""

from peercall.services.core.deduplicator import CandidateDeduplicator, candidate_fingerprint

__all__ = [
    "CandidateDeduplicator",
    "candidate_fingerprint",
]
