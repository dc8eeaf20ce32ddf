"""Pairing manager orchestrates the complete pairing flow.

Coordinates the channel provider, token codec, SAS engine and text
synchronization around a SessionMachine. This is the orchestration
boundary: failures raised by collaborators during an operator action
are caught here and turned into an Error transition.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Optional, TypeVar

from peerpair.config import SessionConfig
from peerpair.errors import PeerPairError, RoleMismatch, TokenExpired, TransportFailure
from peerpair.logging import short
from peerpair.pairing.session import (
    AcceptingAnswer,
    Connecting,
    ConnectionStateChanged,
    CreatedAnswer,
    CreatingAnswer,
    Error,
    GeneratedOffer,
    GeneratingOffer,
    GotAnswer,
    MessageReceived,
    PastedOffer,
    Retry,
    SasComputed,
    SasConfirmed,
    SessionContext,
    SessionMachine,
    SessionState,
    TextChanged,
)
from peerpair.protocols import Channel, ChannelProvider, ConnectionState, Role
from peerpair.sas import SASResult, compute_sas
from peerpair.text_sync import FullMessage, TextSender, parse_text_message
from peerpair.token import (
    AnswerRecord,
    OfferRecord,
    create_answer_token,
    create_offer_token,
    current_time_ms,
    decode_token,
    encode_token,
    expiration_message,
    verify_acknowledges,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


class ChannelSlot:
    """Owned, swappable slot for the live channel handle.

    The channel itself belongs to the provider; the slot only tracks
    which one is live and asks for its release.
    """

    def __init__(self) -> None:
        self._channel: Optional[Channel] = None

    @property
    def channel(self) -> Optional[Channel]:
        return self._channel

    def holds(self, channel: Channel) -> bool:
        return self._channel is not None and self._channel is channel

    async def bind(self, channel: Channel) -> None:
        """Make channel the live one, closing any previous occupant."""
        previous, self._channel = self._channel, channel
        if previous is not None and previous is not channel:
            logger.info("Closing superseded channel")
            await previous.close()

    async def release(self) -> None:
        """Close the live channel (if any), then clear the slot."""
        channel, self._channel = self._channel, None
        if channel is not None:
            await channel.close()


class PairingManager:
    """Drives one pairing session for one role.

    Operator actions: generate_offer(), submit_peer_offer(),
    submit_peer_answer(), confirm_sas(), edit_text(), retry().
    """

    def __init__(
        self,
        role: Role,
        provider: ChannelProvider,
        config: SessionConfig | None = None,
        clock: Callable[[], int] | None = None,
    ) -> None:
        """Initialize pairing manager.

        Args:
            role: Role for the lifetime of the session.
            provider: Channel provider used to negotiate the transport.
            config: Session settings (TTL, read-only policy, debounce).
            clock: Returns current Unix time in ms (for testing).
        """
        self.role = role
        self.provider = provider
        self.config = config or SessionConfig()
        self._clock = clock or current_time_ms
        self.machine = SessionMachine(role)
        self._slot = ChannelSlot()
        self._sender = TextSender(
            self._send_frame, delay=self.config.text_debounce_ms / 1000
        )

    @property
    def state(self) -> SessionState:
        return self.machine.state

    @property
    def context(self) -> SessionContext:
        return self.machine.context

    @property
    def channel(self) -> Optional[Channel]:
        """Live channel handle, if any."""
        return self._slot.channel

    # ------------------------------------------------------------------
    # Operator actions
    # ------------------------------------------------------------------

    async def generate_offer(self) -> Optional[str]:
        """Create a channel and an offer token (initiator).

        A second offer replaces the first and closes its channel.

        Returns:
            Offer wire string, or None if the operation failed or went stale.

        Raises:
            RuntimeError: Outside TOKEN, or while another operation is running.
        """
        self._require_idle_token_state("generate an offer")

        generation = self.context.generation
        self.machine.dispatch(GeneratingOffer())
        try:
            self._require_role(Role.INITIATOR, "generate an offer")
            negotiation = await self._call_provider(self.provider.create_offer())
            if await self._discard_if_stale(generation, negotiation.channel):
                return None

            await self._slot.bind(negotiation.channel)
            if self._is_stale(generation):
                return None
            offer = create_offer_token(
                negotiation.description,
                negotiation.fingerprint,
                ttl_seconds=self.config.offer_ttl_seconds,
                peer_read_only=self.config.peer_read_only,
                now_ms=self._clock(),
            )
            wire = encode_token(offer)
        except Exception as e:
            self._fail(e, "Failed to generate offer", generation)
            return None

        logger.info(f"Offer generated: {short(wire)} (fp={short(offer.fingerprint)})")
        self.machine.dispatch(GeneratedOffer(token=wire))
        return wire

    async def submit_peer_offer(self, wire: str) -> Optional[str]:
        """Answer a pasted offer token (responder).

        Returns:
            Answer wire string, or None if the operation failed or went stale.

        Raises:
            RuntimeError: Outside TOKEN, or while another operation is running.
        """
        self._require_idle_token_state("answer an offer")

        generation = self.context.generation
        try:
            self._require_role(Role.RESPONDER, "answer an offer")
            offer = decode_token(wire)
            if not isinstance(offer, OfferRecord):
                raise RoleMismatch(
                    "Expected an invite token from the initiator, got an answer token"
                )
            expired = expiration_message(offer, self._clock())
            if expired:
                raise TokenExpired(expired)

            self.machine.dispatch(PastedOffer(token=wire))
            self.machine.dispatch(CreatingAnswer())

            negotiation = await self._call_provider(
                self.provider.create_answer(offer.transport_offer)
            )
            if await self._discard_if_stale(generation, negotiation.channel):
                return None

            await self._slot.bind(negotiation.channel)
            if self._is_stale(generation):
                return None
            answer = create_answer_token(
                negotiation.description,
                negotiation.fingerprint,
                wire,
                now_ms=self._clock(),
            )
            answer_wire = encode_token(answer)
            sas = await compute_sas(offer.fingerprint, negotiation.fingerprint)
            if self._is_stale(generation):
                return None
        except Exception as e:
            self._fail(e, "Failed to create answer", generation)
            return None

        logger.info(f"Answer created: {short(answer_wire)} (fp={short(answer.fingerprint)})")
        self._enter_connection(CreatedAnswer(token=answer_wire), negotiation.channel, sas)
        return answer_wire

    async def submit_peer_answer(self, wire: str) -> bool:
        """Accept a pasted answer token (initiator).

        Returns:
            True if the session moved to CONNECTION.

        Raises:
            RuntimeError: Outside TOKEN, or while another operation is running.
        """
        self._require_idle_token_state("accept an answer")

        generation = self.context.generation
        self.machine.dispatch(AcceptingAnswer())
        try:
            self._require_role(Role.INITIATOR, "accept an answer")
            answer = decode_token(wire)
            if not isinstance(answer, AnswerRecord):
                raise RoleMismatch(
                    "Expected an answer token from the responder, got an invite token"
                )

            channel = self._slot.channel
            offer_wire = self.context.offer_token
            if channel is None or offer_wire is None:
                raise TransportFailure("No active connection, generate an invite first")
            verify_acknowledges(answer, offer_wire)
            offer = decode_token(offer_wire)

            await self._call_provider(
                self.provider.accept_answer(channel, answer.transport_answer)
            )
            if self._is_stale(generation):
                return False

            sas = await compute_sas(offer.fingerprint, answer.fingerprint)
            if self._is_stale(generation):
                return False
        except Exception as e:
            self._fail(e, "Failed to accept answer", generation)
            return False

        logger.info(f"Answer accepted (fp={short(answer.fingerprint)})")
        self._enter_connection(GotAnswer(token=wire), channel, sas)
        return True

    def confirm_sas(self) -> None:
        """Operator verified the code out-of-band."""
        self.machine.dispatch(SasConfirmed())

    def edit_text(self, text: str) -> bool:
        """Apply a local edit and schedule a debounced send (initiator).

        Returns:
            True if the edit was applied.
        """
        if self.state != SessionState.TEXTAREA:
            logger.debug(f"Ignoring text edit in state {self.state.value}")
            return False

        before = self.context.send_sequence
        self.machine.dispatch(TextChanged(text=text))
        if self.context.send_sequence == before:
            return False

        self._sender.schedule(self._outbound_snapshot)
        return True

    async def retry(self) -> None:
        """Release the channel and reset the session (from ERROR only)."""
        if self.state != SessionState.ERROR:
            logger.debug(f"Ignoring retry in state {self.state.value}")
            return

        self._sender.cancel()
        await self._slot.release()
        self.machine.dispatch(Retry())
        logger.info("Session reset")

    async def abandon(self, reason: str = "Session abandoned") -> None:
        """Drop the current handshake from any state and start over."""
        if self.state != SessionState.ERROR:
            self.machine.dispatch(Error(message=reason))
        await self.retry()

    async def close(self) -> None:
        """Release resources without resetting the session."""
        self._sender.cancel()
        await self._slot.release()

    async def wait_for_state(
        self, *states: SessionState, timeout: float | None = None
    ) -> SessionState:
        """Wait until the machine is in one of the given states.

        Raises:
            asyncio.TimeoutError: If the timeout elapses first.
        """
        if self.state in states:
            return self.state

        reached = asyncio.Event()

        def listener(state: SessionState, ctx: SessionContext) -> None:
            if state in states:
                reached.set()

        unsubscribe = self.machine.subscribe(listener)
        try:
            await asyncio.wait_for(reached.wait(), timeout=timeout)
        finally:
            unsubscribe()
        return self.state

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _require_idle_token_state(self, action: str) -> None:
        """Handshake actions run only in TOKEN, one at a time.

        Violations are caller errors and leave the session untouched.
        """
        if self.state != SessionState.TOKEN:
            raise RuntimeError(f"Cannot {action} in state {self.state.value}")

        ctx = self.context
        if ctx.generating_offer:
            raise RuntimeError("Offer generation already in progress")
        if ctx.creating_answer:
            raise RuntimeError("Answer creation already in progress")
        if ctx.accepting_answer:
            raise RuntimeError("Answer acceptance already in progress")

    def _require_role(self, role: Role, action: str) -> None:
        if self.role != role:
            raise RoleMismatch(f"Only the {role.value} can {action}")

    async def _call_provider(self, operation: Awaitable[T]) -> T:
        """Await a provider call, wrapping foreign errors as TransportFailure."""
        try:
            return await operation
        except PeerPairError:
            raise
        except Exception as e:
            raise TransportFailure(str(e) or type(e).__name__) from e

    def _is_stale(self, generation: int) -> bool:
        return self.context.generation != generation

    async def _discard_if_stale(self, generation: int, channel: Channel) -> bool:
        """Close a channel returned after the session was reset."""
        if not self._is_stale(generation):
            return False
        logger.info("Discarding stale channel from a previous session")
        await channel.close()
        return True

    def _fail(self, error: Exception, fallback: str, generation: int) -> None:
        if self._is_stale(generation):
            logger.info(f"Ignoring failure from a previous session: {error}")
            return
        message = str(error) or fallback
        logger.error(f"{fallback}: {message}")
        self.machine.dispatch(Error(message=message))

    def _enter_connection(self, event, channel: Channel, sas: SASResult) -> None:
        self.machine.dispatch(event)
        self.machine.dispatch(Connecting(channel=channel))
        self.machine.dispatch(SasComputed(sas=sas))
        logger.info(f"SAS computed: {sas.digits}")

        channel.on_state_change(
            lambda state: self._on_channel_state(channel, state)
        )
        channel.on_message(lambda raw: self._on_channel_message(channel, raw))

        # Catch up on anything the transport reported before we subscribed
        if channel.state != ConnectionState.NEW:
            self._on_channel_state(channel, channel.state)

    def _on_channel_state(self, channel: Channel, state: ConnectionState) -> None:
        if not self._slot.holds(channel):
            logger.debug(f"Ignoring state {state.value} from stale channel")
            return
        self.machine.dispatch(ConnectionStateChanged(state=ConnectionState.parse(state)))

    def _on_channel_message(self, channel: Channel, raw: str) -> None:
        if not self._slot.holds(channel):
            logger.debug("Ignoring message from stale channel")
            return
        message = parse_text_message(raw)
        if message is not None:
            self.machine.dispatch(MessageReceived(message=message))

    def _outbound_snapshot(self) -> Optional[FullMessage]:
        ctx = self.context
        if ctx.connection_state != ConnectionState.CONNECTED or self._slot.channel is None:
            return None
        return FullMessage(seq=ctx.send_sequence, text=ctx.text)

    def _send_frame(self, frame: str) -> None:
        channel = self._slot.channel
        if channel is None:
            raise TransportFailure("No active channel")
        channel.send(frame)
