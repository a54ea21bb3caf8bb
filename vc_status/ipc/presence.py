"""
Presence state machine.

Drives one IPC session from connect to disconnect:

    DISCONNECTED -> CONNECTING -> (REAUTHENTICATING | AUTHORIZING)
        -> AUTHENTICATED -> SUBSCRIBED <-> CHANNEL_JOINED

A single asyncio task consumes the event stream and applies each message to
PresenceState in arrival order. Closing the event connection is the only way
the task ends.
"""

import asyncio
import logging
from typing import Iterable, Optional

from vc_status import config
from vc_status.auth import TokenManager, TokenPair
from vc_status.errors import AuthError, ErrorType, IpcError, VcStatusError

from .command import CommandChannel
from .events import EventChannel, SubscriptionManager
from .notifications import NotificationName, Notifier
from .state import PresenceState, SessionState, VoiceMember
from .transport import ConnectionClosed, TransportError
from .types import (
    AuthenticatePayload,
    AuthorizePayload,
    ChannelSelectPayload,
    Command,
    ErrorPayload,
    Event,
    Message,
    MessageDecodeError,
    SelectedChannelPayload,
    SpeakingPayload,
    UnknownMessageError,
    VoiceSettingsPayload,
    VoiceStatePayload,
    decode_payload,
)

logger = logging.getLogger("vcstatus")

CLOSE_TIMEOUT = 5.0


class PresenceStateMachine:
    """Owns PresenceState and the event loop task for one session."""

    def __init__(
        self,
        command_channel: CommandChannel,
        event_channel: EventChannel,
        token_manager: TokenManager,
        notifier: Optional[Notifier] = None,
        client_id: str = "",
        scopes: Iterable[str] = config.OAUTH_SCOPES,
        event_read_timeout: Optional[float] = None,
    ):
        self.commands = command_channel
        self.events = event_channel
        self.subscriptions = SubscriptionManager(event_channel)
        self.tokens = token_manager
        self.notifier = notifier or Notifier()
        self.client_id = client_id or token_manager.client_id
        self.scopes = list(scopes)
        self.event_read_timeout = event_read_timeout or None

        self.state = PresenceState()
        self.session_state = SessionState.DISCONNECTED
        self.authorize_attempts = 0
        self._task: Optional[asyncio.Task] = None
        self._closing = False

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    # Lifecycle

    async def connect(self) -> None:
        """Open both channels, authenticate and start the event loop.

        Raises:
            IpcError: Connect if either channel cannot be opened
        """
        if self.is_running:
            logger.debug("Already connected")
            return

        self.session_state = SessionState.CONNECTING
        self.state = PresenceState()
        self.authorize_attempts = 0
        self._closing = False

        try:
            await self.commands.connect()
            await self.events.connect()
        except IpcError as e:
            logger.error(f"Failed to connect: {e}")
            self.notifier.emit(NotificationName.CRITICAL_ERROR, e.to_dict())
            await self._close_channels()
            self.session_state = SessionState.DISCONNECTED
            raise

        logger.info("Connected to voice-chat host")
        await self._authenticate()
        self._task = asyncio.create_task(self.run())

    async def disconnect(self) -> None:
        """Close both channels and wait for the event loop to finish."""
        self._closing = True
        await self._close_channels()

        task = self._task
        self._task = None
        if task is not None and not task.done():
            try:
                await asyncio.wait_for(task, CLOSE_TIMEOUT)
            except asyncio.TimeoutError:
                logger.warning("Event loop did not stop after close, cancelling")
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass

        self.state.reset()
        self.session_state = SessionState.DISCONNECTED
        logger.info("Disconnected from voice-chat host")

    async def wait_closed(self) -> None:
        """Wait until the event loop ends."""
        if self._task is not None:
            await self._task

    async def _close_channels(self) -> None:
        for channel in (self.events, self.commands):
            try:
                await channel.close()
            except TransportError as e:
                logger.debug(f"Error while closing channel: {e}")

    # Authentication

    async def _authenticate(self) -> None:
        """Reuse the stored refresh token, or ask the user to authorize."""
        self.session_state = SessionState.REAUTHENTICATING
        try:
            refresh_token = await self.tokens.load_refresh_token()
        except AuthError as e:
            logger.warning(f"Could not read stored token: {e}")
            self.notifier.emit(NotificationName.ERROR, e.to_dict())
            refresh_token = None

        if refresh_token is None:
            logger.info("No stored refresh token, requesting authorization")
            await self._start_authorize()
            return

        try:
            tokens = await self.tokens.refresh(refresh_token)
            await self._persist(tokens)
            await self._send_token(tokens.access_token)
        except VcStatusError as e:
            logger.warning(f"Re-authentication failed: {e}")
            self.notifier.emit(NotificationName.ERROR, e.to_dict())
            await self._start_authorize()
            return
        logger.debug("Re-authenticated with stored refresh token")

    async def _start_authorize(self) -> None:
        self.session_state = SessionState.AUTHORIZING
        self.authorize_attempts += 1
        try:
            await self.events.send_authorize(self.client_id, self.scopes)
        except IpcError as e:
            logger.error(f"Failed to request authorization: {e}")
            self.notifier.emit(
                NotificationName.CRITICAL_ERROR,
                IpcError(ErrorType.AUTHORIZE, e.message, e.payload).to_dict(),
            )

    async def _persist(self, tokens: TokenPair) -> None:
        try:
            await self.tokens.save_refresh_token(tokens.refresh_token)
        except AuthError as e:
            logger.error(f"Failed to persist refresh token: {e}")
            self.notifier.emit(NotificationName.ERROR, e.to_dict())

    async def _send_token(self, access_token: str) -> None:
        await self.commands.send_token(access_token)
        await self.events.send_token(access_token)

    # Event loop

    async def run(self) -> None:
        """Consume the event stream until the event connection is closed."""
        while True:
            try:
                if self.event_read_timeout:
                    raw = await asyncio.wait_for(self.events.receive(), self.event_read_timeout)
                else:
                    raw = await self.events.receive()
            except ConnectionClosed as e:
                logger.info(f"Event stream closed: {e}")
                break
            except asyncio.TimeoutError:
                logger.debug(f"No event within {self.event_read_timeout}s")
                continue
            except (TransportError, MessageDecodeError) as e:
                logger.warning(f"Event Receive Error\n{e}")
                continue

            try:
                message = Message.from_dict(raw)
            except UnknownMessageError as e:
                logger.debug(f"Ignoring message: {e}")
                continue
            except MessageDecodeError as e:
                logger.warning(f"Event Decode Error\n{e}\n{raw}")
                continue

            await self.handle_message(message)

        if not self._closing:
            self.notifier.emit(
                NotificationName.ERROR,
                IpcError(ErrorType.EVENT_RECEIVE, "Connection to the host was lost").to_dict(),
            )
        self.state.reset()
        self.session_state = SessionState.DISCONNECTED

    async def handle_message(self, message: Message) -> None:
        """Apply one decoded message to the session."""
        logger.debug(f"IPC Event: {message.to_dict()}")
        try:
            if message.is_error:
                await self._on_error(message)
            elif message.cmd == Command.DISPATCH:
                await self._on_dispatch(message)
            elif message.cmd == Command.AUTHORIZE:
                await self._on_authorize_code(AuthorizePayload.from_data(message.data))
            elif message.cmd == Command.AUTHENTICATE:
                await self._on_authenticated(AuthenticatePayload.from_data(message.data))
            elif message.cmd == Command.GET_SELECTED_VOICE_CHANNEL:
                await self._on_selected_channel(SelectedChannelPayload.from_data(message.data))
            elif message.cmd in (Command.SUBSCRIBE, Command.UNSUBSCRIBE):
                evt = message.evt.value if message.evt else "?"
                logger.debug(f"{message.cmd.value} acknowledged: {evt}")
        except MessageDecodeError as e:
            logger.warning(f"Malformed {message.cmd.value} message: {e}")

    async def _on_dispatch(self, message: Message) -> None:
        evt = message.evt
        if evt == Event.VOICE_SETTINGS_UPDATE:
            self._on_voice_settings(decode_payload(message))
        elif evt == Event.VOICE_CHANNEL_SELECT:
            await self._on_channel_select(decode_payload(message))
        elif evt == Event.VOICE_STATE_CREATE:
            self._on_voice_state_create(decode_payload(message))
        elif evt == Event.VOICE_STATE_UPDATE:
            self._on_voice_state_update(decode_payload(message))
        elif evt == Event.VOICE_STATE_DELETE:
            self._on_voice_state_delete(decode_payload(message))
        elif evt in (Event.SPEAKING_START, Event.SPEAKING_STOP):
            self._on_speaking(decode_payload(message), evt == Event.SPEAKING_START)

    # Transitions

    async def _on_authorize_code(self, payload: AuthorizePayload) -> None:
        try:
            tokens = await self.tokens.exchange_code(payload.code)
        except AuthError as e:
            logger.error(f"Authorization code exchange failed: {e}")
            self.notifier.emit(NotificationName.CRITICAL_ERROR, e.to_dict())
            return

        await self._persist(tokens)
        try:
            await self._send_token(tokens.access_token)
        except IpcError as e:
            logger.error(f"Authentication failed: {e}")
            self.notifier.emit(NotificationName.CRITICAL_ERROR, e.to_dict())

    async def _on_authenticated(self, payload: AuthenticatePayload) -> None:
        if self.state.current_user_id is not None:
            logger.debug("Ignoring repeated AUTHENTICATE reply")
            return

        self.state.current_user_id = payload.user_id
        self.session_state = SessionState.AUTHENTICATED
        logger.info(f"Authenticated as {payload.username or payload.user_id}")

        for error in await self.subscriptions.subscribe_session_events():
            logger.error(f"Subscribe Error: {error}")
            self.notifier.emit(NotificationName.CRITICAL_ERROR, error.to_dict())
        self.session_state = SessionState.SUBSCRIBED

        try:
            await self.events.request_selected_channel()
        except IpcError as e:
            logger.error(f"Failed to request selected channel: {e}")
            self.notifier.emit(NotificationName.CRITICAL_ERROR, e.to_dict())

    async def _on_selected_channel(self, payload: SelectedChannelPayload) -> None:
        if not payload.in_channel:
            previous = self.state.subscribed_channel_id
            self.state.leave_channel()
            self.session_state = SessionState.SUBSCRIBED
            self.notifier.emit(NotificationName.VC_SELECT, {"in_vc": False})
            if previous is not None:
                await self._set_channel_events(previous, False)
            return

        channel_id = payload.channel_id
        if self.state.current_channel_id != channel_id:
            self.state.members.clear()
        self.state.current_channel_id = channel_id
        self.state.channel_name = payload.name

        present = set()
        for voice_state in payload.voice_states:
            if self.state.is_me(voice_state.user_id):
                continue
            present.add(voice_state.user_id)
            self._upsert_member(voice_state)
        for user_id in list(self.state.members):
            if user_id not in present:
                del self.state.members[user_id]

        self.session_state = SessionState.CHANNEL_JOINED
        self.notifier.emit(NotificationName.VC_SELECT, {"in_vc": True})
        self.notifier.emit(
            NotificationName.VC_INFO,
            {
                "name": payload.name,
                "users": [
                    VoiceMember.from_voice_state(vs).to_dict() for vs in payload.voice_states
                ],
            },
        )
        await self._ensure_channel_subscription(channel_id)

    async def _on_channel_select(self, payload: ChannelSelectPayload) -> None:
        if payload.channel_id is None:
            previous = self.state.subscribed_channel_id or self.state.current_channel_id
            self.state.leave_channel()
            self.session_state = SessionState.SUBSCRIBED
            self.notifier.emit(NotificationName.VC_SELECT, {"in_vc": False})
            if previous is not None:
                await self._set_channel_events(previous, False)
            return

        if self.state.current_channel_id != payload.channel_id:
            self.state.leave_channel()
        self.state.current_channel_id = payload.channel_id
        self.session_state = SessionState.CHANNEL_JOINED
        self.notifier.emit(NotificationName.VC_SELECT, {"in_vc": True})

        try:
            await self.events.request_selected_channel()
        except IpcError as e:
            logger.error(f"Failed to request selected channel: {e}")
            self.notifier.emit(NotificationName.ERROR, e.to_dict())
            return
        await self._ensure_channel_subscription(payload.channel_id)

    def _on_voice_state_create(self, payload: VoiceStatePayload) -> None:
        if self.state.is_me(payload.user_id):
            return
        member = self._upsert_member(payload)
        self.notifier.emit(NotificationName.VC_USER, {"event": "JOIN", "data": member.to_dict()})

    def _on_voice_state_update(self, payload: VoiceStatePayload) -> None:
        if self.state.is_me(payload.user_id):
            return
        member = self._upsert_member(payload)
        self.notifier.emit(NotificationName.VC_USER, {"event": "UPDATE", "data": member.to_dict()})

    def _on_voice_state_delete(self, payload: VoiceStatePayload) -> None:
        if self.state.is_me(payload.user_id):
            return
        member = self.state.members.pop(payload.user_id, None)
        data = member.to_dict() if member else {"id": payload.user_id}
        self.notifier.emit(NotificationName.VC_USER, {"event": "LEAVE", "data": data})

    def _on_speaking(self, payload: SpeakingPayload, speaking: bool) -> None:
        is_me = self.state.is_me(payload.user_id)
        if is_me:
            self.state.self_speaking = speaking
        elif payload.user_id in self.state.members:
            self.state.members[payload.user_id].speaking = speaking
        self.notifier.emit(
            NotificationName.VC_SPEAK,
            {"user_id": payload.user_id, "is_me": is_me, "speaking": speaking},
        )

    def _on_voice_settings(self, payload: VoiceSettingsPayload) -> None:
        self.state.mute = payload.mute
        self.state.deaf = payload.deaf
        self.notifier.emit(
            NotificationName.VC_MUTE_UPDATE, {"mute": payload.mute, "deaf": payload.deaf}
        )

    async def _on_error(self, message: Message) -> None:
        error = ErrorPayload.from_data(message.data)
        if message.cmd == Command.AUTHORIZE:
            logger.error(f"Authorization was cancelled: {error.message}")
            self.notifier.emit(
                NotificationName.CRITICAL_ERROR,
                IpcError(
                    ErrorType.AUTHORIZE,
                    "User cancelled the app authorization.",
                    message.to_dict(),
                ).to_dict(),
            )
            # No retry; the caller may connect() again.
            self._closing = True
            await self._close_channels()
            return

        if message.cmd in (Command.SUBSCRIBE, Command.UNSUBSCRIBE):
            error_type = (
                ErrorType.SUBSCRIBE if message.cmd == Command.SUBSCRIBE else ErrorType.UNSUBSCRIBE
            )
        elif message.cmd == Command.AUTHENTICATE:
            error_type = ErrorType.REAUTH
        else:
            error_type = ErrorType.EVENT_RECEIVE
        logger.error(f"{message.cmd.value} failed: {error.message}")
        self.notifier.emit(
            NotificationName.ERROR,
            IpcError(error_type, error.message or "Unknown error", message.to_dict()).to_dict(),
        )

    # Helpers

    def _upsert_member(self, payload: VoiceStatePayload) -> VoiceMember:
        member = self.state.members.get(payload.user_id)
        if member is None:
            member = VoiceMember.from_voice_state(payload)
            self.state.members[payload.user_id] = member
        else:
            member.update_from(payload)
        return member

    async def _ensure_channel_subscription(self, channel_id: str) -> None:
        """Move the per-channel subscriptions to channel_id."""
        previous = self.state.subscribed_channel_id
        if previous == channel_id:
            return
        if previous is not None:
            await self._set_channel_events(previous, False)
        await self._set_channel_events(channel_id, True)

    async def _set_channel_events(self, channel_id: str, want_subscribe: bool) -> None:
        try:
            await self.subscriptions.set_channel_events(channel_id, want_subscribe)
        except IpcError as e:
            logger.error(f"Subscribe Error: {e}")
            self.notifier.emit(NotificationName.ERROR, e.to_dict())
        # Partial subscriptions still count; the next unsubscribe covers them.
        self.state.subscribed_channel_id = channel_id if want_subscribe else None
