"""Text synchronization over the peer channel.

This module provides:
- FullMessage / PatchMessage: text update frames
- parse_text_message / encode_text_message: JSON wire form
- apply_message: sequence gate for inbound updates
- TextSender: debounced outbound sender

Inbound updates are applied only if their sequence number is above the
last applied one, so duplicates and late deliveries never rewind the
buffer.
"""

import asyncio
import json
import logging
from dataclasses import dataclass
from typing import Any, Callable, Optional, Union

from peerpair.errors import TransportFailure

logger = logging.getLogger(__name__)

__all__ = [
    "FullMessage",
    "GateResult",
    "PatchMessage",
    "TextMessage",
    "TextSender",
    "apply_message",
    "encode_text_message",
    "parse_text_message",
]

DEFAULT_DEBOUNCE_SECONDS = 0.2


@dataclass(frozen=True)
class FullMessage:
    """Replace the whole buffer."""

    seq: int
    text: str


@dataclass(frozen=True)
class PatchMessage:
    """Replace buffer[start:end] with text.

    Fields are kept as received; apply_message() checks their types.
    """

    seq: int
    start: Any
    end: Any
    text: Any


TextMessage = Union[FullMessage, PatchMessage]


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def encode_text_message(message: TextMessage) -> str:
    """Serialize a text message to its JSON wire form."""
    if isinstance(message, FullMessage):
        payload = {"type": "full", "seq": message.seq, "text": message.text}
    else:
        payload = {
            "type": "patch",
            "seq": message.seq,
            "from": message.start,
            "to": message.end,
            "text": message.text,
        }
    return json.dumps(payload)


def parse_text_message(raw: str | bytes) -> Optional[TextMessage]:
    """Parse a text frame.

    Returns:
        The message, or None if the frame is not a text message.
    """
    try:
        data = json.loads(raw)
    except (json.JSONDecodeError, UnicodeDecodeError, RecursionError) as e:
        logger.warning(f"Dropping unparseable text frame: {e}")
        return None

    if not isinstance(data, dict) or not _is_int(data.get("seq")):
        logger.warning("Dropping text frame without integer seq")
        return None

    kind = data.get("type")
    if kind == "full":
        text = data.get("text")
        if not isinstance(text, str):
            logger.warning("Dropping full text frame without text")
            return None
        return FullMessage(seq=data["seq"], text=text)
    if kind == "patch":
        return PatchMessage(
            seq=data["seq"],
            start=data.get("from"),
            end=data.get("to"),
            text=data.get("text"),
        )

    logger.warning(f"Dropping text frame with unknown type: {kind!r}")
    return None


@dataclass(frozen=True)
class GateResult:
    """Buffer and sequence after an applied update."""

    text: str
    last_seq: int


def _patch_is_well_formed(message: PatchMessage) -> bool:
    return (
        _is_int(message.start)
        and _is_int(message.end)
        and isinstance(message.text, str)
        and 0 <= message.start <= message.end
    )


def apply_message(text: str, last_seq: int, message: TextMessage) -> Optional[GateResult]:
    """Apply an inbound update if it is newer than the last applied one.

    Args:
        text: Current buffer.
        last_seq: Sequence number of the last applied update (-1 if none).
        message: Inbound update.

    Returns:
        New buffer and sequence, or None if the update is dropped
        (stale, duplicate, or malformed patch).
    """
    if message.seq <= last_seq:
        logger.debug(f"Dropping stale text update seq={message.seq} (last={last_seq})")
        return None

    if isinstance(message, FullMessage):
        return GateResult(text=message.text, last_seq=message.seq)

    if not _patch_is_well_formed(message):
        logger.debug(f"Dropping malformed patch seq={message.seq}")
        return None

    patched = text[: message.start] + message.text + text[message.end :]
    return GateResult(text=patched, last_seq=message.seq)


class TextSender:
    """Debounced sender for local text edits.

    Each schedule() restarts the window; when it elapses the snapshot
    callable is asked for the message to send. A None snapshot means the
    channel is not ready and nothing is sent.
    """

    def __init__(
        self,
        send: Callable[[str], None],
        delay: float = DEFAULT_DEBOUNCE_SECONDS,
    ) -> None:
        """Initialize sender.

        Args:
            send: Function that writes a text frame to the channel.
            delay: Debounce window in seconds.
        """
        self._send = send
        self.delay = delay
        self._handle: asyncio.TimerHandle | None = None

    @property
    def pending(self) -> bool:
        """Whether a send is waiting for the debounce window."""
        return self._handle is not None

    def schedule(self, snapshot: Callable[[], Optional[FullMessage]]) -> None:
        """(Re)start the debounce window."""
        self.cancel()
        loop = asyncio.get_running_loop()
        self._handle = loop.call_later(self.delay, self._flush, snapshot)

    def cancel(self) -> None:
        """Drop any pending send."""
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None

    def _flush(self, snapshot: Callable[[], Optional[FullMessage]]) -> None:
        self._handle = None
        message = snapshot()
        if message is None:
            logger.debug("Not sending text update: channel not connected")
            return
        try:
            self._send(encode_text_message(message))
        except TransportFailure as e:
            logger.warning(f"Failed to send text update seq={message.seq}: {e}")
