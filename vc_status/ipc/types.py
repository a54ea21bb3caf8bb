"""Message and payload types for the host's local IPC protocol."""

import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional


class Command(str, Enum):
    """Command names carried in the `cmd` field."""

    DISPATCH = "DISPATCH"
    AUTHORIZE = "AUTHORIZE"
    AUTHENTICATE = "AUTHENTICATE"
    SUBSCRIBE = "SUBSCRIBE"
    UNSUBSCRIBE = "UNSUBSCRIBE"
    GET_SELECTED_VOICE_CHANNEL = "GET_SELECTED_VOICE_CHANNEL"
    GET_VOICE_SETTINGS = "GET_VOICE_SETTINGS"
    SET_VOICE_SETTINGS = "SET_VOICE_SETTINGS"
    SELECT_VOICE_CHANNEL = "SELECT_VOICE_CHANNEL"
    SET_ACTIVITY = "SET_ACTIVITY"


class Event(str, Enum):
    """Event names carried in the `evt` field."""

    READY = "READY"
    ERROR = "ERROR"
    VOICE_SETTINGS_UPDATE = "VOICE_SETTINGS_UPDATE"
    VOICE_CHANNEL_SELECT = "VOICE_CHANNEL_SELECT"
    VOICE_STATE_CREATE = "VOICE_STATE_CREATE"
    VOICE_STATE_UPDATE = "VOICE_STATE_UPDATE"
    VOICE_STATE_DELETE = "VOICE_STATE_DELETE"
    SPEAKING_START = "SPEAKING_START"
    SPEAKING_STOP = "SPEAKING_STOP"


# Per-channel events, always (un)subscribed together in this order
CHANNEL_EVENTS = (
    Event.VOICE_STATE_CREATE,
    Event.VOICE_STATE_UPDATE,
    Event.VOICE_STATE_DELETE,
    Event.SPEAKING_START,
    Event.SPEAKING_STOP,
)

# Session-wide events subscribed once after AUTHENTICATE
SESSION_EVENTS = (
    Event.VOICE_SETTINGS_UPDATE,
    Event.VOICE_CHANNEL_SELECT,
)


class MessageDecodeError(ValueError):
    """Raised when a raw message is not a well-formed IPC message."""

    pass


class UnknownMessageError(MessageDecodeError):
    """Raised for a well-formed message with an unrecognized cmd or evt."""

    def __init__(self, message: str, raw: dict):
        super().__init__(message)
        self.raw = raw


def new_nonce() -> str:
    """Random 128-bit correlation id."""
    return str(uuid.uuid4())


def build_command(cmd: Command, args: Optional[dict] = None, evt: Optional[Event] = None) -> dict:
    """Build a command payload with a fresh nonce."""
    payload: dict[str, Any] = {"nonce": new_nonce(), "cmd": cmd.value}
    if evt is not None:
        payload["evt"] = evt.value
    if args is not None:
        payload["args"] = args
    return payload


@dataclass
class Message:
    """One IPC message: either a command reply or a push event."""

    cmd: Command
    evt: Optional[Event] = None
    nonce: Optional[str] = None
    data: Any = None
    args: Optional[dict] = None

    @property
    def is_event(self) -> bool:
        """True for asynchronous dispatches (and ERROR events)."""
        return self.evt is not None and self.cmd == Command.DISPATCH

    @property
    def is_error(self) -> bool:
        return self.evt == Event.ERROR

    @property
    def is_reply(self) -> bool:
        return self.cmd != Command.DISPATCH

    @classmethod
    def from_dict(cls, raw: Any) -> "Message":
        """Decode a raw JSON object.

        Raises:
            MessageDecodeError: If the object is not an IPC message
            UnknownMessageError: If cmd or evt is not a known name
        """
        if not isinstance(raw, dict):
            raise MessageDecodeError(f"Expected a JSON object, got {type(raw).__name__}")

        cmd_name = raw.get("cmd")
        if not isinstance(cmd_name, str):
            raise MessageDecodeError("Message has no cmd field")
        try:
            cmd = Command(cmd_name)
        except ValueError:
            raise UnknownMessageError(f"Unknown command: {cmd_name}", raw) from None

        evt_name = raw.get("evt")
        evt = None
        if evt_name is not None:
            try:
                evt = Event(evt_name)
            except ValueError:
                raise UnknownMessageError(f"Unknown event: {evt_name}", raw) from None

        nonce = raw.get("nonce")
        args = raw.get("args")
        return cls(
            cmd=cmd,
            evt=evt,
            nonce=nonce if isinstance(nonce, str) else None,
            data=raw.get("data"),
            args=args if isinstance(args, dict) else None,
        )

    def to_dict(self) -> dict:
        result: dict[str, Any] = {"cmd": self.cmd.value}
        if self.nonce is not None:
            result["nonce"] = self.nonce
        if self.evt is not None:
            result["evt"] = self.evt.value
        if self.data is not None:
            result["data"] = self.data
        if self.args is not None:
            result["args"] = self.args
        return result


def _dict(value: Any) -> dict:
    return value if isinstance(value, dict) else {}


def _id(value: Any) -> Optional[str]:
    if value is None:
        return None
    return str(value)


# Typed payloads


@dataclass
class ErrorPayload:
    code: Optional[int] = None
    message: str = ""

    @classmethod
    def from_data(cls, data: Any) -> "ErrorPayload":
        data = _dict(data)
        code = data.get("code")
        return cls(
            code=code if isinstance(code, int) else None,
            message=str(data.get("message", "")),
        )


@dataclass
class AuthorizePayload:
    code: str

    @classmethod
    def from_data(cls, data: Any) -> "AuthorizePayload":
        code = _dict(data).get("code")
        if not isinstance(code, str) or not code:
            raise MessageDecodeError("AUTHORIZE reply has no code")
        return cls(code=code)


@dataclass
class AuthenticatePayload:
    user_id: str
    username: str = ""

    @classmethod
    def from_data(cls, data: Any) -> "AuthenticatePayload":
        user = _dict(_dict(data).get("user"))
        user_id = _id(user.get("id"))
        if not user_id:
            raise MessageDecodeError("AUTHENTICATE reply has no user id")
        return cls(user_id=user_id, username=str(user.get("username", "")))


@dataclass
class VoiceStatePayload:
    """A host voice-state object for one user."""

    user_id: str
    username: str = ""
    avatar: Optional[str] = None
    nick: Optional[str] = None
    mute: bool = False
    deaf: bool = False
    self_mute: bool = False
    self_deaf: bool = False

    @classmethod
    def from_data(cls, data: Any) -> "VoiceStatePayload":
        data = _dict(data)
        user = _dict(data.get("user"))
        voice_state = _dict(data.get("voice_state"))
        user_id = _id(user.get("id"))
        if not user_id:
            raise MessageDecodeError("Voice state has no user id")
        return cls(
            user_id=user_id,
            username=str(user.get("username", "")),
            avatar=user.get("avatar"),
            nick=data.get("nick"),
            mute=bool(voice_state.get("mute", False)),
            deaf=bool(voice_state.get("deaf", False)),
            self_mute=bool(voice_state.get("self_mute", False)),
            self_deaf=bool(voice_state.get("self_deaf", False)),
        )


@dataclass
class SelectedChannelPayload:
    """Reply to GET_SELECTED_VOICE_CHANNEL; channel_id is None outside a channel."""

    channel_id: Optional[str] = None
    name: str = ""
    guild_id: Optional[str] = None
    voice_states: list[VoiceStatePayload] = field(default_factory=list)
    raw_voice_states: list = field(default_factory=list)

    @property
    def in_channel(self) -> bool:
        return self.channel_id is not None

    @classmethod
    def from_data(cls, data: Any) -> "SelectedChannelPayload":
        if data is None:
            return cls()
        data = _dict(data)
        channel_id = _id(data.get("id"))
        if not channel_id:
            raise MessageDecodeError("Selected channel has no id")
        raw_states = data.get("voice_states") or []
        if not isinstance(raw_states, list):
            raise MessageDecodeError("voice_states is not a list")
        return cls(
            channel_id=channel_id,
            name=str(data.get("name", "")),
            guild_id=_id(data.get("guild_id")),
            voice_states=[VoiceStatePayload.from_data(s) for s in raw_states],
            raw_voice_states=list(raw_states),
        )


@dataclass
class ChannelSelectPayload:
    channel_id: Optional[str] = None
    guild_id: Optional[str] = None

    @classmethod
    def from_data(cls, data: Any) -> "ChannelSelectPayload":
        data = _dict(data)
        return cls(channel_id=_id(data.get("channel_id")), guild_id=_id(data.get("guild_id")))


@dataclass
class VoiceSettingsPayload:
    mute: bool = False
    deaf: bool = False

    @classmethod
    def from_data(cls, data: Any) -> "VoiceSettingsPayload":
        data = _dict(data)
        return cls(mute=bool(data.get("mute", False)), deaf=bool(data.get("deaf", False)))


@dataclass
class SpeakingPayload:
    user_id: str

    @classmethod
    def from_data(cls, data: Any) -> "SpeakingPayload":
        user_id = _id(_dict(data).get("user_id"))
        if not user_id:
            raise MessageDecodeError("Speaking event has no user_id")
        return cls(user_id=user_id)


_EVENT_PAYLOADS = {
    Event.ERROR: ErrorPayload,
    Event.VOICE_SETTINGS_UPDATE: VoiceSettingsPayload,
    Event.VOICE_CHANNEL_SELECT: ChannelSelectPayload,
    Event.VOICE_STATE_CREATE: VoiceStatePayload,
    Event.VOICE_STATE_UPDATE: VoiceStatePayload,
    Event.VOICE_STATE_DELETE: VoiceStatePayload,
    Event.SPEAKING_START: SpeakingPayload,
    Event.SPEAKING_STOP: SpeakingPayload,
}

_REPLY_PAYLOADS = {
    Command.AUTHORIZE: AuthorizePayload,
    Command.AUTHENTICATE: AuthenticatePayload,
    Command.GET_SELECTED_VOICE_CHANNEL: SelectedChannelPayload,
    Command.GET_VOICE_SETTINGS: VoiceSettingsPayload,
    Command.SET_VOICE_SETTINGS: VoiceSettingsPayload,
}


def decode_payload(message: Message) -> Any:
    """Decode message.data into the typed payload for its cmd/evt.

    Returns the raw data for messages without a typed payload.

    Raises:
        MessageDecodeError: If the data does not fit the expected shape
    """
    if message.evt is not None:
        payload_cls = _EVENT_PAYLOADS.get(message.evt)
    else:
        payload_cls = _REPLY_PAYLOADS.get(message.cmd)
    if payload_cls is None:
        return message.data
    return payload_cls.from_data(message.data)


@dataclass
class Activity:
    """Rich presence activity for SET_ACTIVITY."""

    name: Optional[str] = None
    type: int = 0
    details: Optional[str] = None
    state: Optional[str] = None
    url: Optional[str] = None
    timestamps: Optional[dict] = None
    assets: Optional[dict] = None
    party: Optional[dict] = None
    buttons: Optional[list] = None
    instance: Optional[bool] = None

    @classmethod
    def from_dict(cls, data: dict) -> "Activity":
        known = {
            "name", "type", "details", "state", "url",
            "timestamps", "assets", "party", "buttons", "instance",
        }
        return cls(**{k: v for k, v in data.items() if k in known})

    def to_dict(self) -> dict:
        """Wire form, omitting unset fields."""
        result: dict[str, Any] = {"type": self.type}
        for key in ("name", "details", "state", "url", "timestamps",
                    "assets", "party", "buttons", "instance"):
            value = getattr(self, key)
            if value is not None:
                result[key] = value
        return result
