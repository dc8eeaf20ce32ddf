"""Pytest configuration and shared fixtures."""

import asyncio

import pytest

from peerpair.errors import TransportFailure
from peerpair.protocols import ConnectionState, Negotiation

# Small word list: index = value % 16, so only the low nibble matters
FIXTURE_WORDS = [
    "ant", "bee", "cat", "dog", "eel", "fox", "gnu", "hen",
    "ibis", "jay", "kiwi", "lynx", "mole", "newt", "owl", "pig",
]


@pytest.fixture(autouse=True)
def reset_logging_state():
    """Reset logging state before each test."""
    from peerpair.logging import reset_logging

    reset_logging()
    yield
    reset_logging()


@pytest.fixture(autouse=True)
def reset_dictionary_cache():
    """Drop the process-wide dictionary cache around each test."""
    from peerpair.dicewords import reset_dictionary

    reset_dictionary()
    yield
    reset_dictionary()


@pytest.fixture
def dictionary():
    """In-memory fixture dictionary."""
    from peerpair.dicewords import Dictionary

    return Dictionary(FIXTURE_WORDS)


@pytest.fixture
def word_file(tmp_path):
    """Fixture word list on disk, with noise the parser must ignore."""
    path = tmp_path / "dicewords.txt"
    path.write_text("\n".join(["  " + w + "  " for w in FIXTURE_WORDS]) + "\n\n\n")
    return path


@pytest.fixture
def shared_dictionary(word_file):
    """Point the process-wide loader at the fixture word list."""
    from peerpair.dicewords import configure_dictionary

    return configure_dictionary(str(word_file))


class FakeChannel:
    """In-memory channel that records sends and lets tests drive events."""

    def __init__(self, name: str):
        self.name = name
        self.state = ConnectionState.NEW
        self.sent: list[str] = []
        self.closed = False
        self._state_callbacks = []
        self._message_callbacks = []

    def on_state_change(self, callback):
        self._state_callbacks.append(callback)

    def on_message(self, callback):
        self._message_callbacks.append(callback)

    def send(self, text: str) -> None:
        if self.state != ConnectionState.CONNECTED:
            raise TransportFailure("Data channel not open")
        self.sent.append(text)

    async def close(self) -> None:
        self.closed = True
        self.state = ConnectionState.CLOSED

    def emit_state(self, state: ConnectionState) -> None:
        self.state = state
        for callback in list(self._state_callbacks):
            callback(state)

    def emit_message(self, raw: str) -> None:
        for callback in list(self._message_callbacks):
            callback(raw)


class FakeProvider:
    """Channel provider returning FakeChannels with fixed fingerprints.

    Set `error` to make the next operation fail, or `gate` to hold
    operations until the event is set.
    """

    def __init__(self, fingerprint: str = "AA:BB"):
        self.fingerprint = fingerprint
        self.channels: list[FakeChannel] = []
        self.answered_offers: list[str] = []
        self.accepted: list[tuple[FakeChannel, str]] = []
        self.error: Exception | None = None
        self.gate: asyncio.Event | None = None

    async def _maybe_block_or_fail(self) -> None:
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None:
            raise self.error

    def _new_channel(self) -> FakeChannel:
        channel = FakeChannel(f"channel-{len(self.channels)}")
        self.channels.append(channel)
        return channel

    async def create_offer(self) -> Negotiation:
        await self._maybe_block_or_fail()
        return Negotiation(
            channel=self._new_channel(),
            description="v=0 offer-sdp",
            fingerprint=self.fingerprint,
        )

    async def create_answer(self, transport_offer: str) -> Negotiation:
        await self._maybe_block_or_fail()
        self.answered_offers.append(transport_offer)
        return Negotiation(
            channel=self._new_channel(),
            description="v=0 answer-sdp",
            fingerprint=self.fingerprint,
        )

    async def accept_answer(self, channel, transport_answer: str) -> None:
        await self._maybe_block_or_fail()
        self.accepted.append((channel, transport_answer))


@pytest.fixture
def initiator_provider():
    return FakeProvider(fingerprint="AA:BB")


@pytest.fixture
def responder_provider():
    return FakeProvider(fingerprint="CC:DD")
