"""Pairing module for peerpair.

Provides the manual token-exchange pairing flow:
- Session state machine and context
- Pairing manager (operator actions, channel ownership)
"""

from .manager import ChannelSlot, PairingManager
from .session import SessionContext, SessionMachine, SessionState

__all__ = [
    "ChannelSlot",
    "PairingManager",
    "SessionContext",
    "SessionMachine",
    "SessionState",
]
