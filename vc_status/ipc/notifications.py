"""Outbound notifications for the UI layer."""

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable

logger = logging.getLogger("vcstatus")


class NotificationName(str, Enum):
    ERROR = "error"
    CRITICAL_ERROR = "critical_error"
    VC_SELECT = "vc_select"
    VC_INFO = "vc_info"
    VC_MUTE_UPDATE = "vc_mute_update"
    VC_USER = "vc_user"
    VC_SPEAK = "vc_speak"


@dataclass
class Notification:
    name: NotificationName
    payload: Any


Listener = Callable[[Notification], None]


class Notifier:
    """Fans notifications out to registered listeners.

    A listener that raises is logged and skipped so the event loop keeps going.
    """

    def __init__(self):
        self._listeners: list[Listener] = []

    def add_listener(self, listener: Listener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: Listener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def emit(self, name: NotificationName, payload: Any) -> None:
        notification = Notification(name=name, payload=payload)
        logger.debug(f"Emit {name.value}: {payload}")
        for listener in list(self._listeners):
            try:
                listener(notification)
            except Exception as e:
                logger.error(f"Error while emitting {name.value} notification: {e}")

    def queue(self) -> "asyncio.Queue[Notification]":
        """Register and return a queue that receives every notification."""
        q: asyncio.Queue[Notification] = asyncio.Queue()
        self.add_listener(q.put_nowait)
        return q
