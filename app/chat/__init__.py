"""Client side of the gateway chat protocol"""
from .credentials import ChatCredential, TokenEndpointCredentials
from .reconnect import ExponentialBackoff, FixedDelay, ReconnectPolicy
from .session import GatewaySession, SessionEvent, SessionStatus
from .transcript import EntryState, Role, Transcript, TranscriptEntry

__all__ = [
    "ChatCredential", "TokenEndpointCredentials",
    "ExponentialBackoff", "FixedDelay", "ReconnectPolicy",
    "GatewaySession", "SessionEvent", "SessionStatus",
    "EntryState", "Role", "Transcript", "TranscriptEntry",
]
