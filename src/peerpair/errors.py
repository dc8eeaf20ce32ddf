"""Base exceptions for peerpair."""


class PeerPairError(Exception):
    """Base exception for all peerpair errors."""

    pass


class DictionaryUnavailable(PeerPairError):
    """Word list could not be fetched or contains no usable words."""

    pass


class InvalidTokenFormat(PeerPairError):
    """Wire token is malformed or is not a handshake token at all."""

    pass


class AcknowledgementMismatch(InvalidTokenFormat):
    """Answer token acknowledges a different offer than the one we issued."""

    pass


class TokenExpired(PeerPairError):
    """Offer token is past its time-to-live."""

    pass


class RoleMismatch(PeerPairError):
    """Token or action does not belong to this protocol step."""

    pass


class TransportFailure(PeerPairError):
    """Channel provider rejected an operation."""

    pass


class ConnectionLost(PeerPairError):
    """Transport dropped after data exchange began."""

    def __init__(self, message: str = "Connection lost") -> None:
        super().__init__(message)


class DisplayWordsPasted(InvalidTokenFormat):
    """Input looks like the mnemonic display words, not a wire token."""

    pass
