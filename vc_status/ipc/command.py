"""
Command channel: request/response exchanges over a dedicated connection.

One command is in flight at a time. The lock is held from the write until the
reply has been read, so a reply can never be picked up by a caller that did
not send the matching request.

A command that times out or gets someone else's reply is abandoned: its nonce
is remembered and its reply is dropped whenever it turns up later. A read cut
short by a timeout is not cancelled; the next command picks it up, so a frame
is never left half-read on the socket.
"""

import asyncio
import copy
import logging
from typing import Optional

from vc_status.errors import CommandError, ErrorType, IpcError

from .transport import Connection, TransportError
from .types import Command, Message, MessageDecodeError, build_command, decode_payload

logger = logging.getLogger("vcstatus")


def redact(payload: dict) -> dict:
    """Copy of a payload that is safe to log."""
    args = payload.get("args")
    if isinstance(args, dict) and "access_token" in args:
        payload = copy.deepcopy(payload)
        payload["args"]["access_token"] = "***"
    return payload


class CommandChannel:
    """Serialized request/response correlator over one Connection."""

    def __init__(self, connection: Connection, timeout: Optional[float] = None):
        """
        Args:
            connection: Connection used only for commands
            timeout: Seconds to wait for a reply; None or 0 waits forever
        """
        self.connection = connection
        self.timeout = timeout or None
        self._lock = asyncio.Lock()
        self._abandoned: set[str] = set()
        self._pending: Optional[asyncio.Future] = None

    async def connect(self) -> None:
        self._reset()
        try:
            await self.connection.connect()
        except TransportError as e:
            raise IpcError(ErrorType.CONNECT, f"Failed to connect command channel: {e}") from e

    async def close(self) -> None:
        self._reset()
        await self.connection.close()

    def _reset(self) -> None:
        self._abandoned.clear()
        if self._pending is not None and not self._pending.done():
            self._pending.cancel()
        self._pending = None

    async def _next_frame(self, timeout: Optional[float]) -> dict:
        """Wait for the next incoming message, leaving the read running on timeout."""
        if self._pending is None:
            self._pending = asyncio.ensure_future(self.connection.receive())
        pending = self._pending
        try:
            return await asyncio.wait_for(asyncio.shield(pending), timeout)
        finally:
            if pending.done():
                self._pending = None

    async def _read_reply(self) -> dict:
        """Read messages until one that does not belong to an abandoned command."""
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.timeout if self.timeout else None
        while True:
            remaining = None
            if deadline is not None:
                remaining = deadline - loop.time()
                if remaining <= 0:
                    raise asyncio.TimeoutError()
            raw = await self._next_frame(remaining)
            stale = raw.get("nonce") if isinstance(raw, dict) else None
            if stale is not None and stale in self._abandoned:
                self._abandoned.discard(stale)
                logger.debug(f"Dropped late reply for abandoned command {stale}")
                continue
            return raw

    async def send(self, payload: dict) -> Message:
        """Send a command and return the reply carrying the same nonce.

        Raises:
            IpcError: EventSend if the write fails, EventDecode if the reply
                cannot be read or decoded, EventReceive if the reply belongs
                to a different nonce
        """
        nonce = payload.get("nonce")
        async with self._lock:
            logger.debug(f"Sent payload: {redact(payload)}")
            try:
                await self.connection.send(payload)
            except TransportError as e:
                raise IpcError(
                    ErrorType.EVENT_SEND, f"Failed to send command.\n{e}", redact(payload)
                ) from e

            try:
                raw = await self._read_reply()
                response = Message.from_dict(raw)
            except asyncio.TimeoutError as e:
                if nonce is not None:
                    self._abandoned.add(nonce)
                raise IpcError(
                    ErrorType.EVENT_DECODE,
                    f"Timed out after {self.timeout}s waiting for a reply.",
                    redact(payload),
                ) from e
            except (TransportError, MessageDecodeError) as e:
                raise IpcError(
                    ErrorType.EVENT_DECODE, f"Failed to decode response.\n{e}", redact(payload)
                ) from e

            if nonce is None or response.nonce != nonce:
                if nonce is not None:
                    self._abandoned.add(nonce)
                raise IpcError(
                    ErrorType.EVENT_RECEIVE,
                    f"Invalid message received.\n{response.to_dict()}",
                    redact(payload),
                )
            return response

    async def wait_closed(self) -> None:
        """Keep the connection open until the host closes it.

        The host ties state such as a rich presence activity to the
        connection that set it. No command can be sent while waiting.
        """
        async with self._lock:
            while True:
                try:
                    raw = await self._next_frame(None)
                except MessageDecodeError as e:
                    logger.debug(f"Ignored undecodable message: {e}")
                    continue
                except TransportError as e:
                    logger.debug(f"Command connection ended: {e}")
                    return
                logger.debug(f"Ignored message while idle: {raw}")

    async def request(
        self,
        cmd: Command,
        args: Optional[dict] = None,
        error_type: ErrorType = ErrorType.EVENT_RECEIVE,
    ) -> Message:
        """Build, send and check a command.

        Raises:
            IpcError: From send()
            CommandError: If the host answered with an ERROR event
        """
        payload = build_command(cmd, args)
        response = await self.send(payload)
        if response.is_error:
            error = decode_payload(response)
            raise CommandError(
                f"{cmd.value} failed: {error.message or 'unknown error'}",
                redact(payload),
                error_type=error_type,
                code=error.code,
            )
        return response

    async def send_token(self, access_token: str) -> Message:
        """Authenticate this connection with an access token."""
        return await self.request(
            Command.AUTHENTICATE,
            {"access_token": access_token},
            error_type=ErrorType.REAUTH,
        )
