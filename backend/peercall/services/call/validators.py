"""
Call Validators

Validation and identity helpers for call operations:
- Deterministic call id derivation
- Participant id validation
"""
from typing import Tuple

from peercall.config.constants import CALL_ID_SEPARATOR, PARTICIPANT_ID_FORBIDDEN_CHARS
from .exceptions import InvalidParticipantError


def validate_participants(self_id: str, counterpart_id: str) -> Tuple[str, str]:
    """
    Validate a pair of participant ids.

    Raises:
        InvalidParticipantError if an id is empty, contains the call id
        separator or a key delimiter, or both ids are the same user
    """
    for user_id in (self_id, counterpart_id):
        if not user_id or not user_id.strip():
            raise InvalidParticipantError("Participant id must not be empty")
        for char in PARTICIPANT_ID_FORBIDDEN_CHARS:
            if char in user_id:
                raise InvalidParticipantError(
                    f"Participant id {user_id!r} must not contain {char!r}"
                )

    if self_id == counterpart_id:
        raise InvalidParticipantError("Cannot call yourself")

    return self_id, counterpart_id


def make_call_id(user_a: str, user_b: str) -> str:
    """
    Derive the call id for a pair of participants.

    The ids are sorted and joined, so both peers address the same record
    without a discovery step: make_call_id(a, b) == make_call_id(b, a).
    """
    validate_participants(user_a, user_b)
    return CALL_ID_SEPARATOR.join(sorted((user_a, user_b)))
