"""
Local IPC transport for the voice-chat host.

The host listens on a Unix domain socket named discord-ipc-N (N = 0..9) in the
user's runtime directory. Every frame is an 8-byte little-endian header
(opcode, payload length) followed by a UTF-8 JSON payload. A connection starts
with a HANDSHAKE frame and is ready once the host answers with a READY
dispatch.

Anything that implements the Connection protocol can be used instead, which is
how the tests drive the channels without a running host.
"""

import asyncio
import json
import logging
import os
import struct
from enum import IntEnum
from pathlib import Path
from typing import Protocol

from .types import MessageDecodeError

logger = logging.getLogger("vcstatus")

HEADER = struct.Struct("<II")
MAX_FRAME_SIZE = 64 * 1024 * 1024
SOCKET_NAME = "discord-ipc-{}"
SOCKET_SLOTS = 10


class Opcode(IntEnum):
    HANDSHAKE = 0
    FRAME = 1
    CLOSE = 2
    PING = 3
    PONG = 4


class TransportError(Exception):
    """Raised when the local connection cannot be used."""

    pass


class ConnectionClosed(TransportError):
    """Raised when the connection was closed by either side."""

    pass


class Connection(Protocol):
    """Protocol for message-oriented local connections.

    receive() suspends until one whole message is available. Closing the
    connection makes a pending receive() fail with ConnectionClosed.
    """

    async def connect(self) -> None:
        ...

    async def send(self, message: dict) -> None:
        ...

    async def receive(self) -> dict:
        ...

    async def close(self) -> None:
        ...


def encode_frame(opcode: Opcode, payload: dict) -> bytes:
    """Serialize one frame."""
    body = json.dumps(payload, separators=(",", ":")).encode("utf-8")
    return HEADER.pack(int(opcode), len(body)) + body


async def read_frame(reader: asyncio.StreamReader) -> tuple[int, dict]:
    """Read one frame from the stream.

    Raises:
        ConnectionClosed: On EOF
        MessageDecodeError: If the payload is not a JSON object
    """
    try:
        header = await reader.readexactly(HEADER.size)
        opcode, length = HEADER.unpack(header)
        if length > MAX_FRAME_SIZE:
            raise TransportError(f"Frame too large: {length} bytes")
        body = await reader.readexactly(length)
    except asyncio.IncompleteReadError as e:
        raise ConnectionClosed("Connection closed by host") from e

    try:
        payload = json.loads(body.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise MessageDecodeError(f"Invalid JSON frame: {e}") from e
    if not isinstance(payload, dict):
        raise MessageDecodeError("Frame payload is not a JSON object")
    return opcode, payload


def candidate_socket_paths() -> list[Path]:
    """Socket paths to try, in order."""
    base = None
    for var in ("XDG_RUNTIME_DIR", "TMPDIR", "TMP", "TEMP"):
        value = os.environ.get(var)
        if value:
            base = Path(value)
            break
    if base is None:
        base = Path("/tmp")
    return [base / SOCKET_NAME.format(i) for i in range(SOCKET_SLOTS)]


class IpcSocketConnection:
    """Connection to the host over its Unix domain socket."""

    def __init__(self, client_id: str, path: str | None = None):
        """
        Args:
            client_id: OAuth application id sent in the handshake
            path: Explicit socket path. Defaults to scanning discord-ipc-0..9.
        """
        self.client_id = client_id
        self.path = path
        self._reader: asyncio.StreamReader | None = None
        self._writer: asyncio.StreamWriter | None = None

    @property
    def is_open(self) -> bool:
        return self._writer is not None and not self._writer.is_closing()

    async def connect(self) -> None:
        """Open the socket and complete the handshake.

        Raises:
            TransportError: If no socket accepts the connection or the host
                rejects the handshake
        """
        paths = [Path(self.path)] if self.path else candidate_socket_paths()
        last_error: Exception | None = None
        for path in paths:
            try:
                self._reader, self._writer = await asyncio.open_unix_connection(str(path))
                logger.debug(f"Connected to IPC socket {path}")
                break
            except (FileNotFoundError, ConnectionRefusedError, OSError) as e:
                last_error = e
        else:
            raise TransportError(f"Could not connect to the host IPC socket: {last_error}")

        try:
            await self._write(Opcode.HANDSHAKE, {"v": 1, "client_id": self.client_id})
            opcode, payload = await read_frame(self._reader)
        except TransportError:
            await self.close()
            raise
        except MessageDecodeError as e:
            await self.close()
            raise TransportError(f"Invalid handshake reply: {e}") from e
        if opcode == Opcode.CLOSE:
            await self.close()
            raise TransportError(
                f"Handshake rejected: {payload.get('message', 'unknown reason')}"
            )
        if payload.get("evt") != "READY":
            logger.warning(f"Unexpected handshake reply: {payload.get('evt')}")

    async def send(self, message: dict) -> None:
        await self._write(Opcode.FRAME, message)

    async def receive(self) -> dict:
        if self._reader is None:
            raise ConnectionClosed("Connection is not open")
        while True:
            opcode, payload = await read_frame(self._reader)
            if opcode == Opcode.FRAME:
                return payload
            if opcode == Opcode.PING:
                await self._write(Opcode.PONG, payload)
            elif opcode == Opcode.CLOSE:
                raise ConnectionClosed(
                    f"Host closed the connection: {payload.get('message', '')}"
                )

    async def close(self) -> None:
        writer = self._writer
        self._writer = None
        if writer is None:
            return
        try:
            if not writer.is_closing():
                writer.write(encode_frame(Opcode.CLOSE, {}))
            writer.close()
            await writer.wait_closed()
        except (ConnectionError, OSError) as e:
            logger.debug(f"Error while closing IPC socket: {e}")
        if self._reader is not None:
            self._reader.feed_eof()

    async def _write(self, opcode: Opcode, payload: dict) -> None:
        if self._writer is None or self._writer.is_closing():
            raise ConnectionClosed("Connection is not open")
        try:
            self._writer.write(encode_frame(opcode, payload))
            await self._writer.drain()
        except (ConnectionError, OSError) as e:
            raise TransportError(f"Failed to write to IPC socket: {e}") from e
