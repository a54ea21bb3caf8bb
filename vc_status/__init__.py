"""
vc-status - voice channel status for the desktop chat client

Connects to the chat client's local IPC socket, keeps track of who is in the
user's current voice channel and who is speaking, and exposes one-shot voice
controls (mute, deafen, leave, rich presence).
"""

from .version import __version__

from .errors import AuthError, CommandError, ErrorType, IpcError, VcStatusError

__all__ = [
    "__version__",
    "AuthError",
    "CommandError",
    "ErrorType",
    "IpcError",
    "VcStatusError",
]
