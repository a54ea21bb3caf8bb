"""One-shot voice controls over the command channel."""

import logging
import os
from typing import Optional, Union

from vc_status.errors import ErrorType, IpcError

from .command import CommandChannel
from .state import VoiceMember
from .types import (
    Activity,
    Command,
    Message,
    MessageDecodeError,
    SelectedChannelPayload,
    VoiceSettingsPayload,
)

logger = logging.getLogger("vcstatus")


def _decode(response: Message, payload_cls):
    try:
        return payload_cls.from_data(response.data)
    except MessageDecodeError as e:
        raise IpcError(
            ErrorType.EVENT_DECODE,
            f"Unexpected {response.cmd.value} reply: {e}",
            response.to_dict(),
        ) from e


class VoiceControls:
    """Actions that need an immediate reply from the host.

    Every method is a single round trip (or two for the toggles) on the
    command channel and raises IpcError / CommandError on failure.
    """

    def __init__(self, command_channel: CommandChannel):
        self.commands = command_channel

    async def get_voice_channel(self) -> dict:
        """Describe the channel the user is in."""
        response = await self.commands.request(Command.GET_SELECTED_VOICE_CHANNEL)
        channel = _decode(response, SelectedChannelPayload)
        if not channel.in_channel:
            return {"in_vc": False}
        return {
            "in_vc": True,
            "id": channel.channel_id,
            "name": channel.name,
            "users": [VoiceMember.from_voice_state(vs).to_dict() for vs in channel.voice_states],
        }

    async def get_voice_settings(self) -> VoiceSettingsPayload:
        response = await self.commands.request(Command.GET_VOICE_SETTINGS)
        return _decode(response, VoiceSettingsPayload)

    async def set_voice_settings(
        self, mute: Optional[bool] = None, deaf: Optional[bool] = None
    ) -> VoiceSettingsPayload:
        args = {}
        if mute is not None:
            args["mute"] = mute
        if deaf is not None:
            args["deaf"] = deaf
        response = await self.commands.request(Command.SET_VOICE_SETTINGS, args)
        return _decode(response, VoiceSettingsPayload)

    async def toggle_mute(self) -> VoiceSettingsPayload:
        settings = await self.get_voice_settings()
        logger.debug(f"Toggling mute (currently {settings.mute})")
        return await self.set_voice_settings(mute=not settings.mute)

    async def toggle_deafen(self) -> VoiceSettingsPayload:
        settings = await self.get_voice_settings()
        logger.debug(f"Toggling deafen (currently {settings.deaf})")
        return await self.set_voice_settings(deaf=not settings.deaf)

    async def leave_channel(self) -> None:
        await self.commands.request(
            Command.SELECT_VOICE_CHANNEL,
            {"channel_id": None},
            error_type=ErrorType.LEAVE_VC,
        )

    async def set_activity(
        self,
        activity: Union[Activity, dict, None],
        pid: Optional[int] = None,
    ) -> Message:
        """Set (or with None, clear) the rich presence activity."""
        args: dict = {"pid": pid if pid is not None else os.getpid()}
        if activity is not None:
            if isinstance(activity, dict):
                activity = Activity.from_dict(activity)
            args["activity"] = activity.to_dict()
        return await self.commands.request(Command.SET_ACTIVITY, args)

    async def clear_activity(self, pid: Optional[int] = None) -> Message:
        return await self.set_activity(None, pid=pid)
