"""Derived presence state for the user's current voice channel."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from .types import VoiceStatePayload


class SessionState(Enum):
    """Lifecycle of one IPC session."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    REAUTHENTICATING = "reauthenticating"
    AUTHORIZING = "authorizing"
    AUTHENTICATED = "authenticated"
    SUBSCRIBED = "subscribed"
    CHANNEL_JOINED = "channel_joined"


@dataclass
class VoiceMember:
    """A user in the current voice channel."""

    user_id: str
    username: str = ""
    avatar: Optional[str] = None
    nick: Optional[str] = None
    mute: bool = False
    deaf: bool = False
    self_mute: bool = False
    self_deaf: bool = False
    speaking: bool = False

    @classmethod
    def from_voice_state(cls, state: VoiceStatePayload) -> "VoiceMember":
        member = cls(user_id=state.user_id)
        member.update_from(state)
        return member

    def update_from(self, state: VoiceStatePayload) -> None:
        """Apply a voice-state update, keeping the speaking flag."""
        self.username = state.username
        self.avatar = state.avatar
        self.nick = state.nick
        self.mute = state.mute
        self.deaf = state.deaf
        self.self_mute = state.self_mute
        self.self_deaf = state.self_deaf

    @property
    def effective_mute(self) -> bool:
        """Muted by anyone, or unable to hear (deafened implies muted)."""
        return self.mute or self.self_mute or self.deaf or self.self_deaf

    @property
    def effective_deaf(self) -> bool:
        return self.deaf or self.self_deaf

    @property
    def display_name(self) -> str:
        return self.nick or self.username or self.user_id

    def to_dict(self) -> dict:
        return {
            "id": self.user_id,
            "username": self.username,
            "avatar": self.avatar,
            "nick": self.nick,
            "mute": self.mute,
            "self_mute": self.self_mute,
            "deaf": self.deaf,
            "self_deaf": self.self_deaf,
            "speaking": self.speaking,
        }


@dataclass
class PresenceState:
    """Who is in my channel and what they are doing.

    members never contains current_user_id; the user's own speaking flag and
    voice settings are tracked separately.
    """

    current_user_id: Optional[str] = None
    current_channel_id: Optional[str] = None
    channel_name: str = ""
    members: dict[str, VoiceMember] = field(default_factory=dict)
    self_speaking: bool = False
    mute: bool = False
    deaf: bool = False
    subscribed_channel_id: Optional[str] = None

    @property
    def in_channel(self) -> bool:
        return self.current_channel_id is not None

    def is_me(self, user_id: str) -> bool:
        return self.current_user_id is not None and user_id == self.current_user_id

    def leave_channel(self) -> None:
        self.current_channel_id = None
        self.channel_name = ""
        self.members.clear()
        self.self_speaking = False

    def reset(self) -> None:
        self.leave_channel()
        self.current_user_id = None
        self.subscribed_channel_id = None
        self.mute = False
        self.deaf = False

    def snapshot(self) -> dict:
        """JSON-serializable view of the state."""
        return {
            "user_id": self.current_user_id,
            "channel_id": self.current_channel_id,
            "channel_name": self.channel_name,
            "members": [m.to_dict() for m in self.members.values()],
            "speaking": self.self_speaking,
            "mute": self.mute,
            "deaf": self.deaf,
        }
