"""Protocols and enums for peerpair."""

from dataclasses import dataclass
from enum import Enum
from typing import Callable, Protocol


class Role(Enum):
    """Role a party plays for the lifetime of a pairing session.

    The initiator produces the offer and is the only party allowed to
    edit the shared text. The responder answers and receives text.
    """

    INITIATOR = "initiator"
    RESPONDER = "responder"


class ConnectionState(Enum):
    """State of the underlying peer transport."""

    NEW = "new"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"
    FAILED = "failed"
    CLOSED = "closed"

    @classmethod
    def parse(cls, value: "str | ConnectionState") -> "ConnectionState":
        """Map a transport state string (e.g. aiortc's) onto the enum."""
        if isinstance(value, cls):
            return value
        return cls(str(value).lower())

    @property
    def is_terminal(self) -> bool:
        """Whether this state means the transport can no longer carry data."""
        return self in (
            ConnectionState.DISCONNECTED,
            ConnectionState.FAILED,
            ConnectionState.CLOSED,
        )


class Channel(Protocol):
    """Handle to a peer channel, owned by the channel provider."""

    @property
    def state(self) -> ConnectionState:
        """Current transport state."""
        ...

    def on_state_change(self, callback: Callable[[ConnectionState], None]) -> None:
        """Register callback for transport state changes."""
        ...

    def on_message(self, callback: Callable[[str], None]) -> None:
        """Register callback for incoming text frames."""
        ...

    def send(self, text: str) -> None:
        """Send a text frame. Raises TransportFailure if not open."""
        ...

    async def close(self) -> None:
        """Release the channel. Idempotent."""
        ...


@dataclass(frozen=True)
class Negotiation:
    """Result of a provider offer/answer operation.

    Attributes:
        channel: Channel handle, still owned by the provider.
        description: Opaque transport description (SDP).
        fingerprint: Local transport identity fingerprint.
    """

    channel: Channel
    description: str
    fingerprint: str


class ChannelProvider(Protocol):
    """Protocol for transport implementations (DI for testing)."""

    async def create_offer(self) -> Negotiation:
        """Create a channel and its transport offer."""
        ...

    async def create_answer(self, transport_offer: str) -> Negotiation:
        """Create a channel answering the given transport offer."""
        ...

    async def accept_answer(self, channel: Channel, transport_answer: str) -> None:
        """Apply the peer's transport answer to a channel from create_offer()."""
        ...
