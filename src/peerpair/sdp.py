"""SDP utilities.

Extracts the DTLS fingerprint that identifies a party, and checks
candidate content so ICE gathering problems show up in the logs before
the peer reports a failed connection.
"""

import re
from dataclasses import dataclass, field

_FINGERPRINT_PATTERN = re.compile(r"^a=fingerprint:sha-256\s+(.+)$", re.IGNORECASE)
_CANDIDATE_TYPE_PATTERN = re.compile(r"\styp\s+(\w+)")


@dataclass
class SdpValidationResult:
    """Fingerprint and candidate summary of an SDP blob."""

    is_valid: bool
    candidate_count: int
    has_host: bool
    has_srflx: bool
    has_relay: bool
    errors: list[str] = field(default_factory=list)


def extract_fingerprint(sdp: str) -> str | None:
    """Extract the sha-256 DTLS fingerprint from SDP.

    Args:
        sdp: The SDP string

    Returns:
        Fingerprint value (e.g. "AB:CD:..."), or None if absent
    """
    for line in sdp.splitlines():
        match = _FINGERPRINT_PATTERN.match(line.strip())
        if match:
            return match.group(1).strip()
    return None


def extract_candidates(sdp: str) -> list[str]:
    """Extract all ICE candidate lines from SDP."""
    return [line.strip() for line in sdp.splitlines() if line.startswith("a=candidate:")]


def validate_sdp(sdp: str, description: str = "SDP") -> SdpValidationResult:
    """Check that SDP carries a fingerprint and at least one ICE candidate.

    Args:
        sdp: The SDP string to validate
        description: Human-readable description for error messages
    """
    candidates = extract_candidates(sdp)
    types = set()
    for candidate in candidates:
        match = _CANDIDATE_TYPE_PATTERN.search(candidate)
        if match:
            types.add(match.group(1).lower())

    errors = []
    if not candidates:
        errors.append(f"{description} contains no ICE candidates")
    if extract_fingerprint(sdp) is None:
        errors.append(f"{description} contains no sha-256 fingerprint")

    return SdpValidationResult(
        is_valid=not errors,
        candidate_count=len(candidates),
        has_host="host" in types,
        has_srflx="srflx" in types,
        has_relay="relay" in types,
        errors=errors,
    )
