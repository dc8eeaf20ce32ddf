"""Pairing session state machine.

States and transitions:

    TOKEN ──GotAnswer / CreatedAnswer──> CONNECTION ──(connected & SAS confirmed)──> TEXTAREA
      │                                     │                                          │
      └──────────── Error ─────────────> ERROR <──────── Error / connection lost ───────┘
                                            │
    TOKEN <────────────── Retry ────────────┘

Transitions are looked up in a table keyed by (state, event type). Events
with no entry for the current state are ignored.
"""

import logging
from collections import deque
from dataclasses import dataclass, fields
from enum import Enum
from typing import Any, Callable, Optional, Union

from peerpair.errors import ConnectionLost
from peerpair.protocols import ConnectionState, Role
from peerpair.sas import SASResult
from peerpair.text_sync import TextMessage, apply_message

logger = logging.getLogger(__name__)


class SessionState(Enum):
    """Pairing session states."""

    TOKEN = "token"
    CONNECTION = "connection"
    TEXTAREA = "textarea"
    ERROR = "error"


@dataclass
class SessionContext:
    """All mutable session state. Mutated only by SessionMachine.

    Attributes:
        role: Role for the lifetime of the session.
        offer_token: Offer wire string (generated or pasted).
        answer_token: Answer wire string (created or received).
        channel: Borrowed channel handle, owned by the channel provider.
        sas: Verification code once both fingerprints are known.
        sas_confirmed: Operator confirmed the codes match.
        connection_state: Last reported transport state.
        error_message: Reason for entering ERROR.
        text: Shared text buffer.
        send_sequence: Sequence number of the latest local edit.
        last_applied_receive_sequence: Sequence of the last applied inbound update.
        generation: Bumped on every reset; stale async completions compare against it.
    """

    role: Role
    offer_token: Optional[str] = None
    answer_token: Optional[str] = None
    channel: Optional[Any] = None
    sas: Optional[SASResult] = None
    sas_confirmed: bool = False
    connection_state: ConnectionState = ConnectionState.NEW
    error_message: Optional[str] = None
    text: str = ""
    send_sequence: int = 0
    last_applied_receive_sequence: int = -1

    # In-flight operation markers
    generating_offer: bool = False
    creating_answer: bool = False
    accepting_answer: bool = False

    generation: int = 0

    def reset(self) -> None:
        """Return every field to its initial value, keeping the role."""
        fresh = SessionContext(role=self.role, generation=self.generation + 1)
        for f in fields(self):
            setattr(self, f.name, getattr(fresh, f.name))

    def clear_busy(self) -> None:
        self.generating_offer = False
        self.creating_answer = False
        self.accepting_answer = False


# ============================================================================
# Events
# ============================================================================


@dataclass(frozen=True)
class GeneratingOffer:
    pass


@dataclass(frozen=True)
class GeneratedOffer:
    token: str


@dataclass(frozen=True)
class PastedOffer:
    token: str


@dataclass(frozen=True)
class CreatingAnswer:
    pass


@dataclass(frozen=True)
class CreatedAnswer:
    token: str


@dataclass(frozen=True)
class AcceptingAnswer:
    pass


@dataclass(frozen=True)
class GotAnswer:
    token: str


@dataclass(frozen=True)
class Connecting:
    channel: Any


@dataclass(frozen=True)
class SasComputed:
    sas: SASResult


@dataclass(frozen=True)
class ConnectionStateChanged:
    state: ConnectionState


@dataclass(frozen=True)
class SasConfirmed:
    pass


@dataclass(frozen=True)
class TextChanged:
    text: str


@dataclass(frozen=True)
class MessageReceived:
    message: TextMessage


@dataclass(frozen=True)
class Error:
    message: str


@dataclass(frozen=True)
class Retry:
    pass


SessionEvent = Union[
    GeneratingOffer,
    GeneratedOffer,
    PastedOffer,
    CreatingAnswer,
    CreatedAnswer,
    AcceptingAnswer,
    GotAnswer,
    Connecting,
    SasComputed,
    ConnectionStateChanged,
    SasConfirmed,
    TextChanged,
    MessageReceived,
    Error,
    Retry,
]


# ============================================================================
# Guards
# ============================================================================


def can_enter_textarea(ctx: SessionContext) -> bool:
    """Both the transport and the human check have succeeded."""
    return ctx.connection_state == ConnectionState.CONNECTED and ctx.sas_confirmed


def can_edit(ctx: SessionContext) -> bool:
    """Only the initiator originates text edits."""
    return ctx.role == Role.INITIATOR


# ============================================================================
# Transition handlers: mutate context, return the next state
# ============================================================================


def _generating_offer(ctx: SessionContext, event: GeneratingOffer) -> SessionState:
    ctx.generating_offer = True
    return SessionState.TOKEN


def _generated_offer(ctx: SessionContext, event: GeneratedOffer) -> SessionState:
    ctx.offer_token = event.token
    ctx.generating_offer = False
    return SessionState.TOKEN


def _pasted_offer(ctx: SessionContext, event: PastedOffer) -> SessionState:
    ctx.offer_token = event.token
    return SessionState.TOKEN


def _creating_answer(ctx: SessionContext, event: CreatingAnswer) -> SessionState:
    ctx.creating_answer = True
    return SessionState.TOKEN


def _created_answer(ctx: SessionContext, event: CreatedAnswer) -> SessionState:
    ctx.answer_token = event.token
    ctx.creating_answer = False
    return SessionState.CONNECTION


def _accepting_answer(ctx: SessionContext, event: AcceptingAnswer) -> SessionState:
    ctx.accepting_answer = True
    return SessionState.TOKEN


def _got_answer(ctx: SessionContext, event: GotAnswer) -> SessionState:
    ctx.answer_token = event.token
    ctx.clear_busy()
    return SessionState.CONNECTION


def _connecting(ctx: SessionContext, event: Connecting) -> SessionState:
    ctx.channel = event.channel
    return SessionState.CONNECTION


def _sas_computed(ctx: SessionContext, event: SasComputed) -> SessionState:
    ctx.sas = event.sas
    return SessionState.CONNECTION


def _connection_state_changed(
    ctx: SessionContext, event: ConnectionStateChanged
) -> SessionState:
    ctx.connection_state = event.state
    if can_enter_textarea(ctx):
        return SessionState.TEXTAREA
    return SessionState.CONNECTION


def _sas_confirmed(ctx: SessionContext, event: SasConfirmed) -> SessionState:
    ctx.sas_confirmed = True
    if can_enter_textarea(ctx):
        return SessionState.TEXTAREA
    return SessionState.CONNECTION


def _text_changed(ctx: SessionContext, event: TextChanged) -> SessionState:
    if not can_edit(ctx):
        logger.warning(f"Ignoring text edit from {ctx.role.value}")
        return SessionState.TEXTAREA
    ctx.text = event.text
    ctx.send_sequence += 1
    return SessionState.TEXTAREA


def _message_received(ctx: SessionContext, event: MessageReceived) -> SessionState:
    result = apply_message(ctx.text, ctx.last_applied_receive_sequence, event.message)
    if result is not None:
        ctx.text = result.text
        ctx.last_applied_receive_sequence = result.last_seq
    return SessionState.TEXTAREA


def _textarea_connection_state_changed(
    ctx: SessionContext, event: ConnectionStateChanged
) -> SessionState:
    ctx.connection_state = event.state
    if event.state.is_terminal:
        ctx.error_message = str(ConnectionLost())
        return SessionState.ERROR
    return SessionState.TEXTAREA


def _error(ctx: SessionContext, event: Error) -> SessionState:
    ctx.error_message = event.message
    ctx.clear_busy()
    return SessionState.ERROR


def _retry(ctx: SessionContext, event: Retry) -> SessionState:
    ctx.reset()
    return SessionState.TOKEN


Handler = Callable[[SessionContext, Any], SessionState]

TRANSITIONS: dict[tuple[SessionState, type], Handler] = {
    (SessionState.TOKEN, GeneratingOffer): _generating_offer,
    (SessionState.TOKEN, GeneratedOffer): _generated_offer,
    (SessionState.TOKEN, PastedOffer): _pasted_offer,
    (SessionState.TOKEN, CreatingAnswer): _creating_answer,
    (SessionState.TOKEN, CreatedAnswer): _created_answer,
    (SessionState.TOKEN, AcceptingAnswer): _accepting_answer,
    (SessionState.TOKEN, GotAnswer): _got_answer,
    (SessionState.TOKEN, Error): _error,
    (SessionState.CONNECTION, Connecting): _connecting,
    (SessionState.CONNECTION, SasComputed): _sas_computed,
    (SessionState.CONNECTION, ConnectionStateChanged): _connection_state_changed,
    (SessionState.CONNECTION, SasConfirmed): _sas_confirmed,
    (SessionState.CONNECTION, Error): _error,
    (SessionState.TEXTAREA, TextChanged): _text_changed,
    (SessionState.TEXTAREA, MessageReceived): _message_received,
    (SessionState.TEXTAREA, ConnectionStateChanged): _textarea_connection_state_changed,
    (SessionState.TEXTAREA, Error): _error,
    (SessionState.ERROR, Retry): _retry,
}


Listener = Callable[[SessionState, SessionContext], None]


class SessionMachine:
    """Dispatches events against a SessionContext, one at a time.

    Events dispatched from inside a listener are queued and processed
    after the current one, strictly in dispatch order.
    """

    def __init__(self, role: Role) -> None:
        """Initialize machine in TOKEN with a fresh context.

        Args:
            role: Role fixed for the session lifetime.
        """
        self._state = SessionState.TOKEN
        self._context = SessionContext(role=role)
        self._queue: deque = deque()
        self._dispatching = False
        self._listeners: list[Listener] = []

    @property
    def state(self) -> SessionState:
        """Current state."""
        return self._state

    @property
    def context(self) -> SessionContext:
        """Session context. Read it, do not mutate it."""
        return self._context

    def matches(self, state: SessionState) -> bool:
        return self._state == state

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register a listener called after every handled event.

        Returns:
            Function that removes the listener.
        """
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def dispatch(self, event: SessionEvent) -> None:
        """Process an event (or queue it if a dispatch is in progress).

        If a handler or listener raises, events still queued behind it
        are discarded and the exception propagates to the caller.
        """
        self._queue.append(event)
        if self._dispatching:
            return

        self._dispatching = True
        try:
            while self._queue:
                self._process(self._queue.popleft())
        finally:
            if self._queue:
                logger.warning(f"Discarding {len(self._queue)} queued event(s)")
                self._queue.clear()
            self._dispatching = False

    def _process(self, event: SessionEvent) -> None:
        handler = TRANSITIONS.get((self._state, type(event)))
        if handler is None:
            logger.debug(
                f"Ignoring {type(event).__name__} in state {self._state.value}"
            )
            return

        previous = self._state
        self._state = handler(self._context, event)
        if self._state != previous:
            logger.info(f"Session {previous.value} -> {self._state.value}")

        for listener in list(self._listeners):
            listener(self._state, self._context)
