"""Error taxonomy shared by the IPC session, token manager and CLI."""

from enum import Enum
from typing import Any, Optional


class ErrorType(str, Enum):
    """Error categories reported to the UI layer."""

    CREATE_CLIENT = "CreateClient"
    CONNECT = "Connect"
    AUTHORIZE = "Authorize"
    REAUTH = "ReAuth"
    SUBSCRIBE = "Subscribe"
    UNSUBSCRIBE = "Unsubscribe"
    EVENT_SEND = "EventSend"
    EVENT_RECEIVE = "EventReceive"
    EVENT_DECODE = "EventDecode"
    TOKEN_FETCH = "TokenFetch"
    REFRESH_TOKEN = "RefreshToken"
    CONFIG_READ = "ConfigRead"
    CONFIG_SAVE = "ConfigSave"
    LEAVE_VC = "LeaveVC"


class VcStatusError(Exception):
    """Base error carrying a taxonomy type and the offending payload."""

    def __init__(
        self,
        error_type: ErrorType,
        message: str,
        payload: Optional[Any] = None,
    ):
        super().__init__(message)
        self.error_type = error_type
        self.message = message
        self.payload = payload

    def to_dict(self) -> dict:
        """Notification body for the UI layer."""
        return {
            "error_type": self.error_type.value,
            "message": self.message,
            "payload": self.payload,
        }

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.error_type.value}: {self.message})"


class IpcError(VcStatusError):
    """Local IPC transport or protocol failure."""

    pass


class CommandError(IpcError):
    """The host answered a command with an ERROR event."""

    def __init__(
        self,
        message: str,
        payload: Optional[Any] = None,
        error_type: ErrorType = ErrorType.EVENT_RECEIVE,
        code: Optional[int] = None,
    ):
        super().__init__(error_type, message, payload)
        self.code = code


class AuthError(VcStatusError):
    """OAuth token or credential storage failure."""

    pass
