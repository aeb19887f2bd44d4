"""
aiortc Peer Transport

One RTCPeerConnection per call attempt, exposed through the PeerTransport
protocol with browser-compatible session descriptions and candidates.

aiortc does not trickle: it gathers every local candidate while applying
the local description and writes them into the SDP. The transport reads
them back out of the effective local SDP and emits each one through
on_ice_candidate as {"candidate", "sdpMid", "sdpMLineIndex"}, which is the
shape browsers publish.
"""
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence

from aiortc import (
    RTCConfiguration,
    RTCIceServer,
    RTCPeerConnection,
    RTCSessionDescription,
)
from aiortc.sdp import candidate_from_sdp

from peercall.schemas.call import SessionDescription
from peercall.services.call.exceptions import (
    IceCandidateError,
    InvalidRemoteDescriptionError,
    TransportError,
)
from peercall.services.protocols import MediaHandle

logger = logging.getLogger(__name__)

CANDIDATE_PREFIX = "candidate:"


def parse_sdp_candidates(sdp: str) -> List[Dict[str, Any]]:
    """
    Extract the a=candidate lines of an SDP blob.

    Returns:
        Candidates in RTCIceCandidateInit form, in SDP order
    """
    sections: List[Dict[str, Any]] = []
    for line in sdp.splitlines():
        line = line.strip()
        if line.startswith("m="):
            sections.append({"mid": None, "candidates": []})
        elif not sections:
            continue
        elif line.startswith("a=mid:"):
            sections[-1]["mid"] = line[len("a=mid:"):]
        elif line.startswith("a=" + CANDIDATE_PREFIX):
            sections[-1]["candidates"].append(line[len("a="):])

    candidates = []
    for index, section in enumerate(sections):
        for candidate in section["candidates"]:
            candidates.append({
                "candidate": candidate,
                "sdpMid": section["mid"],
                "sdpMLineIndex": index,
            })
    return candidates


def build_ice_servers(
    urls: Sequence[str],
    username: Optional[str] = None,
    credential: Optional[str] = None,
) -> List[RTCIceServer]:
    servers = []
    for url in urls:
        if url.startswith(("turn:", "turns:")):
            servers.append(RTCIceServer(urls=[url], username=username, credential=credential))
        else:
            servers.append(RTCIceServer(urls=[url]))
    return servers


class AiortcPeerTransport:
    """PeerTransport implementation on aiortc."""

    def __init__(self, configuration: RTCConfiguration):
        self._pc = RTCPeerConnection(configuration=configuration)
        self._closed = False

        self.on_remote_track: Optional[Callable[[Any], Awaitable[None]]] = None
        self.on_ice_candidate: Optional[Callable[[Dict[str, Any]], Awaitable[None]]] = None
        self.on_connection_state_change: Optional[Callable[[str], Awaitable[None]]] = None

        self._pc.on("track", self._handle_track)
        self._pc.on("connectionstatechange", self._handle_connection_state)

    @property
    def has_remote_description(self) -> bool:
        return self._pc.remoteDescription is not None

    @property
    def connection_state(self) -> str:
        return self._pc.connectionState

    def add_local_tracks(self, media: MediaHandle) -> None:
        for track in media.tracks:
            self._pc.addTrack(track)

    async def create_offer(self) -> SessionDescription:
        try:
            offer = await self._pc.createOffer()
        except Exception as e:
            raise TransportError(f"Could not create offer: {e}") from e
        return SessionDescription(sdp=offer.sdp, type=offer.type)

    async def create_answer(self) -> SessionDescription:
        if not self.has_remote_description:
            raise TransportError("Cannot create an answer before the remote offer is set")
        try:
            answer = await self._pc.createAnswer()
        except Exception as e:
            raise TransportError(f"Could not create answer: {e}") from e
        return SessionDescription(sdp=answer.sdp, type=answer.type)

    async def set_local_description(self, description: SessionDescription) -> SessionDescription:
        try:
            await self._pc.setLocalDescription(
                RTCSessionDescription(sdp=description.sdp, type=description.type)
            )
        except Exception as e:
            raise TransportError(f"Could not set local {description.type}: {e}") from e

        local = self._pc.localDescription
        effective = SessionDescription(sdp=local.sdp, type=local.type)

        candidates = parse_sdp_candidates(local.sdp)
        logger.info(f"[Transport] Gathered {len(candidates)} local candidate(s)")
        for candidate in candidates:
            if self._closed or self.on_ice_candidate is None:
                break
            await self.on_ice_candidate(candidate)

        return effective

    async def set_remote_description(self, description: SessionDescription) -> None:
        if self.has_remote_description:
            raise InvalidRemoteDescriptionError("Remote description already set")
        try:
            await self._pc.setRemoteDescription(
                RTCSessionDescription(sdp=description.sdp, type=description.type)
            )
        except Exception as e:
            raise TransportError(f"Could not set remote {description.type}: {e}") from e

    async def add_ice_candidate(self, candidate: Dict[str, Any]) -> None:
        if self._closed:
            raise IceCandidateError("Transport is closed")

        line = candidate.get("candidate") or ""
        if not line:
            # End-of-candidates marker
            return
        if line.startswith(CANDIDATE_PREFIX):
            line = line[len(CANDIDATE_PREFIX):]

        try:
            ice = candidate_from_sdp(line)
            ice.sdpMid = candidate.get("sdpMid")
            ice.sdpMLineIndex = candidate.get("sdpMLineIndex")
            await self._pc.addIceCandidate(ice)
        except Exception as e:
            raise IceCandidateError(f"Rejected candidate {line[:60]!r}: {e}") from e

        logger.debug(f"[Transport] Added remote candidate {line[:60]}")

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self.on_remote_track = None
        self.on_ice_candidate = None
        self.on_connection_state_change = None
        await self._pc.close()
        logger.info("[Transport] Peer connection closed")

    async def _handle_track(self, track):
        logger.info(f"[Transport] Remote {track.kind} track received")
        if self._closed or self.on_remote_track is None:
            return
        await self.on_remote_track(track)

    async def _handle_connection_state(self):
        state = self._pc.connectionState
        logger.info(f"[Transport] Connection state -> {state}")
        if self._closed or self.on_connection_state_change is None:
            return
        await self.on_connection_state_change(state)


class AiortcTransportFactory:
    """Opens AiortcPeerTransport instances; TURN credentials apply to turn:/turns: URLs."""

    def __init__(self, turn_username: Optional[str] = None, turn_credential: Optional[str] = None):
        self.turn_username = turn_username
        self.turn_credential = turn_credential

    @classmethod
    def from_settings(cls, settings) -> "AiortcTransportFactory":
        return cls(turn_username=settings.TURN_USERNAME, turn_credential=settings.TURN_CREDENTIAL)

    def open(self, ice_servers: Sequence[str]) -> AiortcPeerTransport:
        configuration = RTCConfiguration(
            iceServers=build_ice_servers(ice_servers, self.turn_username, self.turn_credential)
        )
        return AiortcPeerTransport(configuration)
