"""
Media Transport

Builds the point-to-point transport (aiortc RTCPeerConnection) for a call
attempt and converts between aiortc objects and signaling payloads.
"""

from aiortc import (
    RTCConfiguration,
    RTCIceCandidate,
    RTCIceServer,
    RTCPeerConnection,
    RTCSessionDescription,
)
from aiortc.sdp import candidate_from_sdp, candidate_to_sdp
from duet.tools.errors import CandidateRejected, InvalidRemoteDescription
from typing import List, Optional

CANDIDATE_PREFIX = "candidate:"


def create_peer_connection(ice_servers: List[str]) -> RTCPeerConnection:
    """Create a fresh peer connection using the given STUN/TURN URLs."""
    configuration = RTCConfiguration(
        iceServers=[RTCIceServer(urls=url) for url in ice_servers]
    )
    return RTCPeerConnection(configuration=configuration)


def description_to_payload(description) -> dict:
    return {"type": description.type, "sdp": description.sdp}


def payload_to_description(payload: dict, expected_type: str) -> RTCSessionDescription:
    """
    Build a session description from an offer/answer payload.

    Raises:
        InvalidRemoteDescription: if the payload is malformed or carries the
            wrong description type
    """
    if not isinstance(payload, dict):
        raise InvalidRemoteDescription("Session description must be an object")
    sdp_type = payload.get("type")
    sdp = payload.get("sdp")
    if sdp_type != expected_type:
        raise InvalidRemoteDescription(
            f"Expected a description of type {expected_type!r}, got {sdp_type!r}"
        )
    if not isinstance(sdp, str) or not sdp.strip():
        raise InvalidRemoteDescription("Session description has no SDP body")
    try:
        return RTCSessionDescription(sdp=sdp, type=sdp_type)
    except ValueError as e:
        raise InvalidRemoteDescription(str(e)) from e


def candidate_to_payload(candidate: RTCIceCandidate) -> dict:
    """Describe a local candidate the way a browser's RTCIceCandidate.toJSON() does."""
    return {
        "candidate": CANDIDATE_PREFIX + candidate_to_sdp(candidate),
        "sdpMid": candidate.sdpMid,
        "sdpMLineIndex": candidate.sdpMLineIndex,
    }


def is_end_of_candidates(payload: dict) -> bool:
    return not (payload or {}).get("candidate")


def payload_to_candidate(payload: dict) -> Optional[RTCIceCandidate]:
    """
    Parse a remote candidate descriptor.

    Returns:
        RTCIceCandidate, or None for the end-of-candidates marker

    Raises:
        CandidateRejected: if the candidate line cannot be parsed
    """
    if is_end_of_candidates(payload):
        return None

    line = payload["candidate"].strip()
    if line.startswith(CANDIDATE_PREFIX):
        line = line[len(CANDIDATE_PREFIX):]
    try:
        candidate = candidate_from_sdp(line)
    except Exception as e:
        raise CandidateRejected(f"Malformed candidate {payload['candidate']!r}") from e

    candidate.sdpMid = payload.get("sdpMid")
    candidate.sdpMLineIndex = payload.get("sdpMLineIndex")
    return candidate
