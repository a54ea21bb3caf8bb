"""
Session wiring: builds the channels, token manager and state machine.

    client = get_client()
    client.notifier.add_listener(print)
    await client.connect()
    ...
    await client.disconnect()
"""

import logging
from typing import Optional

from vc_status import config
from vc_status.auth import TokenManager, get_token_manager
from vc_status.config import ConfigError
from vc_status.errors import AuthError, ErrorType, VcStatusError
from vc_status.ipc.command import CommandChannel
from vc_status.ipc.controls import VoiceControls
from vc_status.ipc.events import EventChannel
from vc_status.ipc.notifications import Notifier
from vc_status.ipc.presence import PresenceStateMachine
from vc_status.ipc.state import PresenceState, SessionState
from vc_status.ipc.transport import Connection, IpcSocketConnection

logger = logging.getLogger("vcstatus")


class VoiceStatusClient:
    """One voice-chat host session plus its one-shot controls."""

    def __init__(
        self,
        token_manager: TokenManager,
        command_connection: Optional[Connection] = None,
        event_connection: Optional[Connection] = None,
        notifier: Optional[Notifier] = None,
        ipc_path: Optional[str] = None,
        command_timeout: float = config.COMMAND_TIMEOUT,
        event_read_timeout: float = config.EVENT_READ_TIMEOUT,
    ):
        client_id = token_manager.client_id
        path = ipc_path or config.IPC_PATH or None

        self.tokens = token_manager
        self.notifier = notifier or Notifier()
        self.command_channel = CommandChannel(
            command_connection or IpcSocketConnection(client_id, path),
            timeout=command_timeout,
        )
        self.event_channel = EventChannel(
            event_connection or IpcSocketConnection(client_id, path)
        )
        self.session = PresenceStateMachine(
            self.command_channel,
            self.event_channel,
            token_manager,
            notifier=self.notifier,
            client_id=client_id,
            event_read_timeout=event_read_timeout,
        )
        self.controls = VoiceControls(self.command_channel)

    @property
    def state(self) -> PresenceState:
        return self.session.state

    @property
    def session_state(self) -> SessionState:
        return self.session.session_state

    async def connect(self) -> None:
        """Start the full session: authenticate, subscribe, follow events."""
        await self.session.connect()

    async def disconnect(self) -> None:
        await self.session.disconnect()

    async def wait_closed(self) -> None:
        await self.session.wait_closed()

    async def connect_commands(self) -> None:
        """Open and authenticate only the command channel.

        Used for one-shot controls. Requires a stored refresh token from an
        earlier full session; never prompts the user.

        Raises:
            IpcError: If the channel cannot be opened or authenticated
            AuthError: If there is no usable stored token
        """
        await self.command_channel.connect()
        try:
            refresh_token = await self.tokens.load_refresh_token()
            if refresh_token is None:
                raise AuthError(
                    ErrorType.REAUTH,
                    "Not authorized yet. Run 'vc-status watch' once to approve the app.",
                )
            tokens = await self.tokens.refresh(refresh_token)
            await self.tokens.save_refresh_token(tokens.refresh_token)
            await self.command_channel.send_token(tokens.access_token)
        except VcStatusError:
            await self.command_channel.close()
            raise

    async def close_commands(self) -> None:
        await self.command_channel.close()


_client: Optional[VoiceStatusClient] = None


def get_client() -> VoiceStatusClient:
    """Get or create the singleton VoiceStatusClient.

    Raises:
        VcStatusError: CreateClient if the OAuth client is not configured
    """
    global _client
    if _client is None:
        try:
            token_manager = get_token_manager()
        except ConfigError as e:
            raise VcStatusError(ErrorType.CREATE_CLIENT, str(e)) from e
        _client = VoiceStatusClient(token_manager)
    return _client
