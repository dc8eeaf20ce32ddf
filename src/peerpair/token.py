"""Handshake token codec.

This module provides:
- OfferRecord / AnswerRecord: the two handshake record shapes
- encode_token / decode_token: compact, tamper-evident wire form
- Expiry policy for offers
- Display words derived from the compressed wire bytes

Wire format: canonical JSON (sorted keys, compact separators, UTF-8),
zlib deflate, base64url without padding.
"""

import base64
import binascii
import hashlib
import json
import math
import re
import time
import zlib
from dataclasses import dataclass, field
from typing import Any, Union

from peerpair.dicewords import Dictionary, words_from_bytes
from peerpair.errors import (
    AcknowledgementMismatch,
    DisplayWordsPasted,
    InvalidTokenFormat,
)
from peerpair.protocols import Role

__all__ = [
    "AnswerRecord",
    "HandshakeToken",
    "OfferPolicy",
    "OfferRecord",
    "compressed_bytes",
    "create_answer_token",
    "create_offer_token",
    "decode_token",
    "display_words",
    "encode_token",
    "expiration_message",
    "is_expired",
    "token_digest",
    "verify_acknowledges",
]

TOKEN_VERSION = 1
DEFAULT_TTL_SECONDS = 180  # 3 minutes
DISPLAY_WORD_COUNT = 8
MAX_TOKEN_BYTES = 64 * 1024  # decompressed JSON

# Operators sometimes paste the display words instead of the token.
# Best-effort check, not a security boundary.
_DISPLAY_WORDS_PATTERN = re.compile(r"^[A-Za-z]+(\s+[A-Za-z]+){5,7}$")


def current_time_ms() -> int:
    """Current Unix time in milliseconds."""
    return int(time.time() * 1000)


@dataclass(frozen=True)
class OfferPolicy:
    """Policy the initiator attaches to its offer.

    Attributes:
        peer_read_only: Whether the responder may only read the text.
        ttl_seconds: How long the offer stays valid.
    """

    peer_read_only: bool
    ttl_seconds: int


@dataclass(frozen=True)
class OfferRecord:
    """Handshake record produced by the initiator."""

    transport_offer: str
    fingerprint: str
    policy: OfferPolicy
    created_at_ms: int
    version: int = TOKEN_VERSION
    role: Role = field(default=Role.INITIATOR, init=False)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dict for JSON serialization."""
        return {
            "v": self.version,
            "role": self.role.value,
            "sdpOffer": self.transport_offer,
            "fp": self.fingerprint,
            "policy": {
                "peerIsReadOnly": self.policy.peer_read_only,
                "ttlSec": self.policy.ttl_seconds,
            },
            "ts": self.created_at_ms,
        }

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> "OfferRecord":
        """Create from a validated-shape dict.

        Raises:
            InvalidTokenFormat: If a field is missing or mistyped.
        """
        policy = _field(d, "policy", dict)
        return cls(
            version=_version(d),
            transport_offer=_field(d, "sdpOffer", str),
            fingerprint=_fingerprint(d),
            policy=OfferPolicy(
                peer_read_only=_field(policy, "peerIsReadOnly", bool, "policy."),
                ttl_seconds=_field(policy, "ttlSec", int, "policy."),
            ),
            created_at_ms=_field(d, "ts", int),
        )


@dataclass(frozen=True)
class AnswerRecord:
    """Handshake record produced by the responder.

    Attributes:
        acknowledged_offer_digest: Hex SHA-256 of the offer's wire string.
    """

    transport_answer: str
    fingerprint: str
    acknowledged_offer_digest: str
    created_at_ms: int
    version: int = TOKEN_VERSION
    role: Role = field(default=Role.RESPONDER, init=False)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dict for JSON serialization."""
        return {
            "v": self.version,
            "role": self.role.value,
            "sdpAnswer": self.transport_answer,
            "fp": self.fingerprint,
            "ackOf": self.acknowledged_offer_digest,
            "ts": self.created_at_ms,
        }

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> "AnswerRecord":
        """Create from a validated-shape dict.

        Raises:
            InvalidTokenFormat: If a field is missing or mistyped.
        """
        return cls(
            version=_version(d),
            transport_answer=_field(d, "sdpAnswer", str),
            fingerprint=_fingerprint(d),
            acknowledged_offer_digest=_field(d, "ackOf", str),
            created_at_ms=_field(d, "ts", int),
        )


HandshakeToken = Union[OfferRecord, AnswerRecord]


def _field(d: dict[str, Any], key: str, kind: type, prefix: str = "") -> Any:
    """Read a required field, checking its JSON type."""
    if key not in d:
        raise InvalidTokenFormat(f"Invalid token format: {prefix}{key}: required")

    value = d[key]
    if kind is int:
        # bool is a subclass of int in Python, JSON keeps them apart
        valid = isinstance(value, int) and not isinstance(value, bool) and value >= 0
        expected = "non-negative integer"
    else:
        valid = isinstance(value, kind)
        expected = {str: "string", bool: "boolean", dict: "object"}[kind]

    if not valid:
        raise InvalidTokenFormat(
            f"Invalid token format: {prefix}{key}: expected {expected}"
        )
    return value


def _version(d: dict[str, Any]) -> int:
    version = _field(d, "v", int)
    if version != TOKEN_VERSION:
        raise InvalidTokenFormat(
            f"Invalid token format: v: unsupported version {version}"
        )
    return version


def _fingerprint(d: dict[str, Any]) -> str:
    fingerprint = _field(d, "fp", str)
    if not fingerprint:
        raise InvalidTokenFormat("Invalid token format: fp: must not be empty")
    return fingerprint


def token_from_dict(data: Any) -> HandshakeToken:
    """Validate parsed JSON against the two record shapes.

    Raises:
        InvalidTokenFormat: Naming the field that failed.
    """
    if not isinstance(data, dict):
        raise InvalidTokenFormat("Invalid token format: expected an object")

    role = data.get("role")
    if role == Role.INITIATOR.value:
        return OfferRecord.from_dict(data)
    if role == Role.RESPONDER.value:
        return AnswerRecord.from_dict(data)
    raise InvalidTokenFormat(
        "Invalid token format: role: expected 'initiator' or 'responder'"
    )


def create_offer_token(
    transport_offer: str,
    fingerprint: str,
    ttl_seconds: int = DEFAULT_TTL_SECONDS,
    peer_read_only: bool = True,
    now_ms: int | None = None,
) -> OfferRecord:
    """Build an offer record stamped with the current time."""
    if not fingerprint:
        raise ValueError("Fingerprint must not be empty")
    if ttl_seconds < 0:
        raise ValueError(f"TTL must be non-negative, got {ttl_seconds}")
    return OfferRecord(
        transport_offer=transport_offer,
        fingerprint=fingerprint,
        policy=OfferPolicy(peer_read_only=peer_read_only, ttl_seconds=ttl_seconds),
        created_at_ms=current_time_ms() if now_ms is None else now_ms,
    )


def create_answer_token(
    transport_answer: str,
    fingerprint: str,
    offer_wire: str,
    now_ms: int | None = None,
) -> AnswerRecord:
    """Build an answer record acknowledging the received offer wire string."""
    if not fingerprint:
        raise ValueError("Fingerprint must not be empty")
    return AnswerRecord(
        transport_answer=transport_answer,
        fingerprint=fingerprint,
        acknowledged_offer_digest=token_digest(offer_wire),
        created_at_ms=current_time_ms() if now_ms is None else now_ms,
    )


def normalize_wire(wire: str) -> str:
    """Strip all whitespace (line-wrapped pastes) from a wire token."""
    return "".join(wire.split())


def token_digest(wire: str) -> str:
    """Hex SHA-256 of a wire token's bytes (whitespace removed)."""
    return hashlib.sha256(normalize_wire(wire).encode("utf-8")).hexdigest()


def encode_token(token: HandshakeToken) -> str:
    """Serialize a token to its wire string."""
    canonical = json.dumps(
        token.to_dict(), sort_keys=True, separators=(",", ":"), ensure_ascii=False
    ).encode("utf-8")
    compressed = zlib.compress(canonical, 9)
    return base64.urlsafe_b64encode(compressed).rstrip(b"=").decode("ascii")


def compressed_bytes(wire: str) -> bytes:
    """Decode a wire token's base64url layer, restoring omitted padding.

    Raises:
        InvalidTokenFormat: If the input is not valid base64url.
    """
    clean = normalize_wire(wire)
    padded = clean + "=" * (-len(clean) % 4)
    try:
        return base64.b64decode(padded, altchars=b"-_", validate=True)
    except (binascii.Error, ValueError) as e:
        raise InvalidTokenFormat(f"Invalid base64url encoding: {e}") from e


def looks_like_display_words(text: str) -> bool:
    """Whether text looks like 6-8 pasted display words."""
    return bool(_DISPLAY_WORDS_PATTERN.match(text.strip()))


def decode_token(wire: str) -> HandshakeToken:
    """Parse and validate a wire token.

    Args:
        wire: Wire string as pasted by the operator.

    Returns:
        OfferRecord or AnswerRecord.

    Raises:
        DisplayWordsPasted: If the input is the mnemonic display form.
        InvalidTokenFormat: On any decoding or validation failure.
    """
    clean = wire.strip()
    if not clean:
        raise InvalidTokenFormat("Invalid token format: token is empty")

    if looks_like_display_words(clean):
        raise DisplayWordsPasted(
            "Invalid token format: these look like the display words. "
            "Copy and paste the full token instead."
        )

    compressed = compressed_bytes(clean)

    inflater = zlib.decompressobj()
    try:
        raw = inflater.decompress(compressed, MAX_TOKEN_BYTES)
        if not inflater.eof and inflater.decompress(inflater.unconsumed_tail, 1):
            raise InvalidTokenFormat(
                f"Failed to unpack token: exceeds {MAX_TOKEN_BYTES} bytes"
            )
    except zlib.error as e:
        raise InvalidTokenFormat(f"Failed to unpack token: {e}") from e
    if not inflater.eof:
        raise InvalidTokenFormat("Failed to unpack token: truncated data")

    try:
        data = json.loads(raw.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError, RecursionError) as e:
        raise InvalidTokenFormat(f"Failed to unpack token: {e}") from e

    return token_from_dict(data)


def is_expired(token: HandshakeToken, now_ms: int | None = None) -> bool:
    """Check whether a token is past its TTL.

    Answers never expire: they are consumed immediately on receipt.
    """
    if not isinstance(token, OfferRecord):
        return False
    now = current_time_ms() if now_ms is None else now_ms
    return now > token.created_at_ms + token.policy.ttl_seconds * 1000


def expiration_message(token: HandshakeToken, now_ms: int | None = None) -> str | None:
    """Human-readable expiry error, or None if the token is still valid."""
    now = current_time_ms() if now_ms is None else now_ms
    if not is_expired(token, now):
        return None

    expired_at = token.created_at_ms + token.policy.ttl_seconds * 1000
    elapsed = math.ceil((now - expired_at) / 1000)
    return (
        f"Invite token expired {elapsed} seconds ago. "
        "Please generate a new invite token."
    )


def verify_acknowledges(answer: AnswerRecord, offer_wire: str) -> None:
    """Check that an answer was created for the given offer.

    Raises:
        AcknowledgementMismatch: If the answer acknowledges another offer.
    """
    if answer.acknowledged_offer_digest != token_digest(offer_wire):
        raise AcknowledgementMismatch(
            "Answer token was created for a different invite token"
        )


async def display_words(
    token: HandshakeToken | str, dictionary: Dictionary | None = None
) -> list[str]:
    """Eight display words derived from the compressed wire bytes.

    Args:
        token: Token record, or an already-encoded wire string.
        dictionary: Dictionary to use. None uses the shared dictionary.
    """
    wire = token if isinstance(token, str) else encode_token(token)
    return await words_from_bytes(compressed_bytes(wire), DISPLAY_WORD_COUNT, dictionary)
