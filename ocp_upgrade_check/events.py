# SPDX-License-Identifier: MIT

"""Outbound RunCompleted event.

The core only publishes. Delivery to chat, webhook or scheduling systems
belongs to subscribers, and a failing subscriber never fails the run.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable

from ocp_upgrade_check.models import Report
from ocp_upgrade_check.render import Artifacts

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RunCompleted:
    report: Report
    artifacts: Artifacts | None = None
    write_error: str | None = None


Subscriber = Callable[[RunCompleted], None]


class EventBus:
    def __init__(self) -> None:
        self._subscribers: list[Subscriber] = []

    def subscribe(self, subscriber: Subscriber) -> None:
        self._subscribers.append(subscriber)

    def publish(self, event: RunCompleted) -> None:
        for subscriber in self._subscribers:
            try:
                subscriber(event)
            except Exception:
                logger.exception("RunCompleted subscriber %r failed", subscriber)
