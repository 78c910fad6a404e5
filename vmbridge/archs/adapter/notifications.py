# Copyright (c) Nex-AGI. All rights reserved.
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""Non-blocking notification channel between the sandbox layer and its host.

The sandbox never shows dialogs itself. It publishes notifications that a
host (GUI, CLI, gateway) may render, and asks a pluggable confirmation
handler when it needs a yes/no answer.
"""

import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass
from typing import Literal

logger = logging.getLogger(__name__)

NotificationLevel = Literal["info", "warning", "error"]

_LOG_LEVELS: dict[str, int] = {"info": logging.INFO, "warning": logging.WARNING, "error": logging.ERROR}


@dataclass(frozen=True)
class Notification:
    """
    A message for the host to surface.

    Attributes:
        level: Severity
        title: Short heading
        message: One-sentence description
        detail: Optional longer explanation
        kind: Stable machine tag, e.g. ``backend_unavailable``
    """

    level: NotificationLevel
    title: str
    message: str
    detail: str | None = None
    kind: str = "generic"


NotificationCallback = Callable[[Notification], None]
ConfirmationHandler = Callable[[Notification], bool]


class NotificationHub:
    """Thread-safe fan-out of notifications to subscribers."""

    def __init__(self) -> None:
        self._subscribers: list[NotificationCallback] = []
        self._confirmation_handler: ConfirmationHandler | None = None
        self._lock = threading.Lock()

    def subscribe(self, callback: NotificationCallback) -> Callable[[], None]:
        """Register ``callback``; returns a function that unsubscribes it."""
        with self._lock:
            self._subscribers.append(callback)

        def _unsubscribe() -> None:
            with self._lock:
                if callback in self._subscribers:
                    self._subscribers.remove(callback)

        return _unsubscribe

    def publish(self, notification: Notification) -> None:
        logger.log(_LOG_LEVELS[notification.level], f"[{notification.kind}] {notification.title}: {notification.message}")

        with self._lock:
            subscribers = list(self._subscribers)
        for callback in subscribers:
            try:
                callback(notification)
            except Exception as e:
                logger.error(f"Notification subscriber {callback!r} failed: {e}")

    def set_confirmation_handler(self, handler: ConfirmationHandler | None) -> None:
        with self._lock:
            self._confirmation_handler = handler

    def confirm(self, notification: Notification, default: bool = True) -> bool:
        """Ask the confirmation handler; ``default`` is returned when none is installed."""
        with self._lock:
            handler = self._confirmation_handler
        if handler is None:
            logger.info(f"No confirmation handler for '{notification.title}', using default={default}")
            return default
        try:
            return bool(handler(notification))
        except Exception as e:
            logger.error(f"Confirmation handler failed for '{notification.title}': {e}")
            return default

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subscribers)
