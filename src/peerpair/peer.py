"""WebRTC channel provider built on aiortc."""

import asyncio
import logging
from typing import Callable

from aiortc import RTCConfiguration, RTCIceServer, RTCPeerConnection, RTCSessionDescription

from peerpair.errors import TransportFailure
from peerpair.logging import short
from peerpair.protocols import Channel, ConnectionState, Negotiation
from peerpair.sdp import extract_fingerprint, validate_sdp

logger = logging.getLogger(__name__)

DATA_CHANNEL_LABEL = "txt"


class PeerChannel:
    """Text channel over an RTCPeerConnection.

    Both sides create the same negotiated data channel (label "txt",
    id 0), so no in-band channel announcement is needed.
    """

    def __init__(self, pc: RTCPeerConnection) -> None:
        """Initialize channel.

        Args:
            pc: Peer connection this channel owns.
        """
        self._pc: RTCPeerConnection | None = pc
        self._state = ConnectionState.NEW
        self._state_callbacks: list[Callable[[ConnectionState], None]] = []
        self._message_callbacks: list[Callable[[str], None]] = []

        @pc.on("connectionstatechange")
        async def on_connection_state_change():
            raw = pc.connectionState
            logger.info(f"Connection state: {raw}")
            try:
                state = ConnectionState.parse(raw)
            except ValueError:
                logger.warning(f"Unknown connection state: {raw}")
                return
            self._set_state(state)

        self._data_channel = pc.createDataChannel(
            DATA_CHANNEL_LABEL,
            negotiated=True,
            id=0,
            ordered=True,
        )

        @self._data_channel.on("open")
        def on_open():
            logger.info("Data channel open")

        @self._data_channel.on("message")
        def on_message(message):
            if isinstance(message, bytes):
                message = message.decode("utf-8", errors="replace")
            for callback in list(self._message_callbacks):
                callback(message)

        @self._data_channel.on("close")
        def on_channel_close():
            logger.info("Data channel closed")

    @property
    def state(self) -> ConnectionState:
        """Current connection state."""
        return self._state

    @property
    def pc(self) -> RTCPeerConnection | None:
        return self._pc

    def _set_state(self, state: ConnectionState) -> None:
        if state == self._state:
            return
        self._state = state
        for callback in list(self._state_callbacks):
            callback(state)

    def on_state_change(self, callback: Callable[[ConnectionState], None]) -> None:
        """Register callback for connection state changes."""
        self._state_callbacks.append(callback)

    def on_message(self, callback: Callable[[str], None]) -> None:
        """Register callback for incoming text frames."""
        self._message_callbacks.append(callback)

    def send(self, text: str) -> None:
        """Send a text frame.

        Raises:
            TransportFailure: If the data channel is not open.
        """
        if self._data_channel.readyState != "open":
            raise TransportFailure("Data channel not open")
        self._data_channel.send(text)

    async def set_remote_description(self, sdp: str, sdp_type: str) -> None:
        if self._pc is None:
            raise TransportFailure("Peer connection is closed")
        await self._pc.setRemoteDescription(RTCSessionDescription(sdp=sdp, type=sdp_type))

    async def close(self) -> None:
        """Close the peer connection.

        This method is idempotent - calling it multiple times is safe.
        """
        pc, self._pc = self._pc, None
        if pc is not None:
            await pc.close()
            logger.info("Peer connection closed")
        self._set_state(ConnectionState.CLOSED)


class AiortcChannelProvider:
    """Channel provider negotiating WebRTC peer connections with aiortc."""

    DEFAULT_STUN_SERVERS = [
        "stun:stun.l.google.com:19302",
    ]

    def __init__(
        self,
        stun_servers: list[str] | None = None,
        pc_factory: Callable[[RTCConfiguration], RTCPeerConnection] | None = None,
        ice_gathering_timeout: float = 10.0,
    ) -> None:
        """Initialize provider.

        Args:
            stun_servers: List of STUN server URLs.
            pc_factory: Factory to create RTCPeerConnection (for testing).
            ice_gathering_timeout: Seconds to wait for ICE gathering.
        """
        self.stun_servers = (
            self.DEFAULT_STUN_SERVERS if stun_servers is None else stun_servers
        )
        self._pc_factory = pc_factory or self._default_pc_factory
        self.ice_gathering_timeout = ice_gathering_timeout

    def _default_pc_factory(self, config: RTCConfiguration) -> RTCPeerConnection:
        """Create default RTCPeerConnection."""
        return RTCPeerConnection(configuration=config)

    def _create_channel(self) -> PeerChannel:
        if self.stun_servers:
            config = RTCConfiguration(iceServers=[RTCIceServer(urls=self.stun_servers)])
        else:
            config = RTCConfiguration(iceServers=[])
        return PeerChannel(self._pc_factory(config))

    async def create_offer(self) -> Negotiation:
        """Create a channel and its SDP offer."""
        channel = self._create_channel()
        try:
            pc = channel.pc
            offer = await pc.createOffer()
            await pc.setLocalDescription(offer)
            await self._wait_ice_gathering(pc)
            return self._negotiation(channel, pc.localDescription.sdp, "Local offer")
        except Exception:
            await channel.close()
            raise

    async def create_answer(self, transport_offer: str) -> Negotiation:
        """Create a channel answering the given SDP offer."""
        validation = validate_sdp(transport_offer, "Remote offer")
        if not validation.is_valid:
            logger.warning(f"Remote offer validation issues: {validation.errors}")
        logger.info(
            f"Remote offer: {validation.candidate_count} candidates "
            f"(host={validation.has_host}, srflx={validation.has_srflx}, "
            f"relay={validation.has_relay})"
        )

        channel = self._create_channel()
        try:
            await channel.set_remote_description(transport_offer, "offer")
            pc = channel.pc
            answer = await pc.createAnswer()
            await pc.setLocalDescription(answer)
            await self._wait_ice_gathering(pc)
            return self._negotiation(channel, pc.localDescription.sdp, "Local answer")
        except Exception:
            await channel.close()
            raise

    async def accept_answer(self, channel: Channel, transport_answer: str) -> None:
        """Apply the peer's SDP answer to a channel from create_offer()."""
        if not isinstance(channel, PeerChannel):
            raise TransportFailure("Channel was not created by this provider")
        await channel.set_remote_description(transport_answer, "answer")

    def _negotiation(self, channel: PeerChannel, sdp: str, description: str) -> Negotiation:
        fingerprint = extract_fingerprint(sdp)
        if not fingerprint:
            raise TransportFailure("Failed to extract fingerprint from SDP")
        logger.info(
            f"{description}: {len(sdp)} bytes, fingerprint {short(fingerprint, 11)}"
        )
        return Negotiation(channel=channel, description=sdp, fingerprint=fingerprint)

    async def _wait_ice_gathering(self, pc: RTCPeerConnection) -> None:
        """Wait for ICE gathering to complete."""
        if pc.iceGatheringState == "complete":
            return

        done = asyncio.Event()

        @pc.on("icegatheringstatechange")
        def on_ice_gathering_state_change():
            if pc.iceGatheringState == "complete":
                done.set()

        try:
            await asyncio.wait_for(done.wait(), timeout=self.ice_gathering_timeout)
        except asyncio.TimeoutError:
            logger.warning("ICE gathering timeout, proceeding anyway")
