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

"""Tests for NotificationHub."""

import logging

import pytest

from vmbridge.archs.adapter.notifications import Notification, NotificationHub

WARNING = Notification(level="warning", title="WSL2 not available", message="Falling back.", kind="backend_unavailable")


@pytest.fixture
def hub():
    return NotificationHub()


class TestPublish:
    def test_delivers_to_all_subscribers(self, hub):
        first, second = [], []
        hub.subscribe(first.append)
        hub.subscribe(second.append)
        hub.publish(WARNING)
        assert first == [WARNING]
        assert second == [WARNING]
        assert hub.subscriber_count == 2

    def test_unsubscribe(self, hub):
        received = []
        unsubscribe = hub.subscribe(received.append)
        unsubscribe()
        unsubscribe()
        hub.publish(WARNING)
        assert received == []
        assert hub.subscriber_count == 0

    def test_failing_subscriber_does_not_stop_delivery(self, hub, caplog):
        received = []

        def broken(notification):
            raise RuntimeError("renderer crashed")

        hub.subscribe(broken)
        hub.subscribe(received.append)
        hub.publish(WARNING)
        assert received == [WARNING]
        assert any("renderer crashed" in record.getMessage() for record in caplog.records)

    def test_logged_at_notification_level(self, hub, caplog):
        caplog.set_level(logging.INFO, logger="vmbridge.archs.adapter.notifications")
        hub.publish(WARNING)
        hub.publish(Notification(level="error", title="Install failed", message="x", kind="install_failed"))
        levels = [(record.levelno, record.getMessage()) for record in caplog.records]
        assert (logging.WARNING, "[backend_unavailable] WSL2 not available: Falling back.") in levels
        assert (logging.ERROR, "[install_failed] Install failed: x") in levels


class TestConfirm:
    QUESTION = Notification(level="info", title="Install Node.js?", message="Install it now?", kind="install_node")

    def test_default_without_handler(self, hub):
        assert hub.confirm(self.QUESTION) is True
        assert hub.confirm(self.QUESTION, default=False) is False

    def test_handler_answer(self, hub):
        asked = []

        def handler(notification):
            asked.append(notification.kind)
            return False

        hub.set_confirmation_handler(handler)
        assert hub.confirm(self.QUESTION) is False
        assert asked == ["install_node"]

    def test_handler_failure_uses_default(self, hub):
        def handler(notification):
            raise OSError("no tty")

        hub.set_confirmation_handler(handler)
        assert hub.confirm(self.QUESTION, default=True) is True
        assert hub.confirm(self.QUESTION, default=False) is False

    def test_clear_handler(self, hub):
        hub.set_confirmation_handler(lambda notification: False)
        hub.set_confirmation_handler(None)
        assert hub.confirm(self.QUESTION) is True
