from types import SimpleNamespace

import pytest
from aiortc import RTCConfiguration
from aiortc.mediastreams import AudioStreamTrack

from peercall.services.call import (
    IceCandidateError,
    InvalidRemoteDescriptionError,
    TransportError,
)
from peercall.services.rtc import AiortcPeerTransport
from peercall.services.rtc.transport import parse_sdp_candidates


def offline_transport() -> AiortcPeerTransport:
    # No STUN/TURN servers, so gathering stays on the local interfaces
    return AiortcPeerTransport(RTCConfiguration(iceServers=[]))


def fake_media():
    return SimpleNamespace(tracks=[AudioStreamTrack()], released=False)


@pytest.mark.asyncio
async def test_offer_answer_between_two_transports():
    caller, callee = offline_transport(), offline_transport()
    caller_candidates, callee_candidates = [], []

    async def on_caller_candidate(candidate):
        caller_candidates.append(candidate)

    async def on_callee_candidate(candidate):
        callee_candidates.append(candidate)

    caller.on_ice_candidate = on_caller_candidate
    callee.on_ice_candidate = on_callee_candidate
    caller.add_local_tracks(fake_media())
    callee.add_local_tracks(fake_media())

    try:
        offer = await caller.create_offer()
        local_offer = await caller.set_local_description(offer)
        assert local_offer.type == "offer"
        # Candidates come out of the gathered SDP, one hook call each
        assert caller_candidates == parse_sdp_candidates(local_offer.sdp)
        assert all(c["candidate"].startswith("candidate:") for c in caller_candidates)

        assert not callee.has_remote_description
        await callee.set_remote_description(local_offer)
        assert callee.has_remote_description

        answer = await callee.create_answer()
        local_answer = await callee.set_local_description(answer)
        assert local_answer.type == "answer"
        assert callee_candidates == parse_sdp_candidates(local_answer.sdp)

        await caller.set_remote_description(local_answer)
        assert caller.has_remote_description

        with pytest.raises(InvalidRemoteDescriptionError):
            await caller.set_remote_description(local_answer)

        for candidate in callee_candidates:
            await caller.add_ice_candidate(candidate)

        # End-of-candidates marker is accepted and ignored
        await caller.add_ice_candidate({"candidate": "", "sdpMid": "0", "sdpMLineIndex": 0})

        with pytest.raises(IceCandidateError):
            await caller.add_ice_candidate(
                {"candidate": "candidate:garbage", "sdpMid": "0", "sdpMLineIndex": 0}
            )
    finally:
        await caller.close()
        await callee.close()


@pytest.mark.asyncio
async def test_create_answer_requires_remote_offer():
    transport = offline_transport()
    try:
        with pytest.raises(TransportError):
            await transport.create_answer()
    finally:
        await transport.close()


@pytest.mark.asyncio
async def test_close_is_idempotent_and_silences_hooks():
    transport = offline_transport()
    states = []

    async def on_state(state):
        states.append(state)

    transport.on_connection_state_change = on_state
    transport.add_local_tracks(fake_media())
    await transport.set_local_description(await transport.create_offer())

    await transport.close()
    await transport.close()

    assert transport.on_connection_state_change is None
    assert transport.on_ice_candidate is None
    assert transport.on_remote_track is None
    assert "closed" not in states
    assert transport.connection_state == "closed"

    with pytest.raises(IceCandidateError):
        await transport.add_ice_candidate(
            {"candidate": "candidate:1 1 udp 2130706431 192.168.1.10 50001 typ host",
             "sdpMid": "0", "sdpMLineIndex": 0}
        )
