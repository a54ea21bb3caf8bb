"""
Local IPC session with the voice-chat host.

Two connections are used: a command channel for request/response exchanges and
an event channel for the authorize handshake and the event stream.
"""

from .command import CommandChannel
from .controls import VoiceControls
from .events import EventChannel, SubscriptionManager
from .notifications import Notification, NotificationName, Notifier
from .presence import PresenceStateMachine
from .state import PresenceState, SessionState, VoiceMember
from .transport import (
    Connection,
    ConnectionClosed,
    IpcSocketConnection,
    TransportError,
)
from .types import Activity, Command, Event, Message, MessageDecodeError

__all__ = [
    # Channels
    "CommandChannel",
    "EventChannel",
    "SubscriptionManager",
    # Session
    "PresenceStateMachine",
    "PresenceState",
    "SessionState",
    "VoiceMember",
    "VoiceControls",
    # Notifications
    "Notification",
    "NotificationName",
    "Notifier",
    # Transport
    "Connection",
    "ConnectionClosed",
    "IpcSocketConnection",
    "TransportError",
    # Protocol types
    "Activity",
    "Command",
    "Event",
    "Message",
    "MessageDecodeError",
]
