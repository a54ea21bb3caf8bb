"""
Event channel and subscription manager.

The event channel owns the connection that carries the authorize handshake and
the asynchronous event stream. Writes on it never wait for a reply: the
acknowledgement of a SUBSCRIBE or the reply to GET_SELECTED_VOICE_CHANNEL
shows up later on the stream and is handled by the presence state machine.
"""

import logging
from typing import Iterable, Optional

from vc_status.errors import ErrorType, IpcError

from .command import redact
from .transport import Connection, TransportError
from .types import (
    CHANNEL_EVENTS,
    SESSION_EVENTS,
    Command,
    Event,
    build_command,
)

logger = logging.getLogger("vcstatus")


class EventChannel:
    """Fire-and-forget writer plus the raw event stream of one Connection."""

    def __init__(self, connection: Connection):
        self.connection = connection

    async def connect(self) -> None:
        try:
            await self.connection.connect()
        except TransportError as e:
            raise IpcError(ErrorType.CONNECT, f"Failed to connect event channel: {e}") from e

    async def close(self) -> None:
        await self.connection.close()

    async def send(self, payload: dict) -> None:
        """Write one message without waiting for a reply.

        Raises:
            IpcError: EventSend if the write fails
        """
        logger.debug(f"Sent payload: {redact(payload)}")
        try:
            await self.connection.send(payload)
        except TransportError as e:
            raise IpcError(
                ErrorType.EVENT_SEND, f"Failed to send payload.\n{e}", redact(payload)
            ) from e

    async def receive(self) -> dict:
        """Read the next raw message from the stream.

        Raises:
            ConnectionClosed: When the connection has been closed
            TransportError: On other read failures
            MessageDecodeError: If the frame is not valid JSON
        """
        return await self.connection.receive()

    async def subscribe(
        self,
        event: Event,
        args: Optional[dict] = None,
        want_subscribe: bool = True,
    ) -> None:
        """Send SUBSCRIBE (or UNSUBSCRIBE) for one event.

        Raises:
            IpcError: Subscribe or Unsubscribe if the write fails
        """
        cmd = Command.SUBSCRIBE if want_subscribe else Command.UNSUBSCRIBE
        payload = build_command(cmd, args if args is not None else {}, evt=event)
        try:
            await self.send(payload)
        except IpcError as e:
            action = "subscribe" if want_subscribe else "unsubscribe"
            raise IpcError(
                ErrorType.SUBSCRIBE if want_subscribe else ErrorType.UNSUBSCRIBE,
                f"Failed to {action} event: {event.value}",
                payload,
            ) from e

    async def send_authorize(self, client_id: str, scopes: Iterable[str]) -> None:
        """Ask the host to show the authorization prompt."""
        await self.send(
            build_command(Command.AUTHORIZE, {"client_id": client_id, "scopes": list(scopes)})
        )

    async def send_token(self, access_token: str) -> None:
        """Authenticate this connection; the reply arrives on the stream."""
        await self.send(build_command(Command.AUTHENTICATE, {"access_token": access_token}))

    async def request_selected_channel(self) -> None:
        """Ask for the current voice channel; the reply arrives on the stream."""
        await self.send(build_command(Command.GET_SELECTED_VOICE_CHANNEL))


class SubscriptionManager:
    """Issues the fixed per-channel and session-wide subscriptions."""

    def __init__(self, channel: EventChannel):
        self.channel = channel

    async def set_channel_events(self, channel_id: str, want_subscribe: bool) -> None:
        """(Un)subscribe all per-channel events for channel_id.

        Stops at the first failure. Subscriptions already sent are not rolled
        back.

        Raises:
            IpcError: Subscribe or Unsubscribe
        """
        args = {"channel_id": channel_id}
        for event in CHANNEL_EVENTS:
            await self.channel.subscribe(event, dict(args), want_subscribe)
        logger.debug(
            f"{'Subscribed to' if want_subscribe else 'Unsubscribed from'} "
            f"channel {channel_id} events"
        )

    async def subscribe_session_events(self) -> list[IpcError]:
        """Subscribe to the session-wide events.

        Each subscription is attempted even if an earlier one fails.

        Returns:
            The errors raised, if any
        """
        errors = []
        for event in SESSION_EVENTS:
            try:
                await self.channel.subscribe(event, {}, True)
            except IpcError as e:
                errors.append(e)
        return errors
