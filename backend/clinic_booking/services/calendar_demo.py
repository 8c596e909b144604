from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, List, Optional, Tuple

from ..errors import ExternalUnavailable
from .calendar_base import CalendarGateway
from .intervals import BusyBlock, TimeInterval, overlaps

DEFAULT_CALENDAR = "primary"


@dataclass
class DemoEvent:
    summary: str
    description: str
    interval: TimeInterval


class InMemoryCalendarGateway(CalendarGateway):
    """
    Deterministic calendar kept in process memory.
    - Used when no Google service account is configured
    - Busy blocks are the stored events plus anything added with add_busy()
    - ``fail_on`` makes the named operations raise ExternalUnavailable
    """

    def __init__(self) -> None:
        self.events: Dict[Tuple[str, str], DemoEvent] = {}
        self.blocks: Dict[str, List[BusyBlock]] = {}
        self.fail_on: set[str] = set()
        self.calls: List[str] = []

    def _calendar(self, calendar_id: Optional[str]) -> str:
        return calendar_id or DEFAULT_CALENDAR

    def _enter(self, op: str) -> None:
        self.calls.append(op)
        if op in self.fail_on:
            raise ExternalUnavailable(f"Calendar {op} failed")

    def add_busy(self, block: BusyBlock, calendar_id: Optional[str] = None) -> None:
        self.blocks.setdefault(self._calendar(calendar_id), []).append(block)

    def list_busy(self, window_start: datetime, window_end: datetime, calendar_id: Optional[str] = None) -> List[BusyBlock]:
        self._enter("list_busy")
        cal = self._calendar(calendar_id)
        window = TimeInterval(window_start, window_end)
        busy = list(self.blocks.get(cal, []))
        busy += [ev.interval for (c, _), ev in self.events.items() if c == cal]
        return sorted(b for b in busy if overlaps(window, b))

    def insert_event(self, calendar_id: Optional[str], summary: str, description: str, interval: TimeInterval) -> str:
        self._enter("insert_event")
        event_id = "evt_" + uuid.uuid4().hex[:12]
        self.events[(self._calendar(calendar_id), event_id)] = DemoEvent(summary, description, interval)
        return event_id

    def update_event(
        self,
        event_id: str,
        calendar_id: Optional[str],
        summary: Optional[str] = None,
        description: Optional[str] = None,
        interval: Optional[TimeInterval] = None,
    ) -> None:
        self._enter("update_event")
        ev = self.events.get((self._calendar(calendar_id), event_id))
        if ev is None:
            raise ExternalUnavailable(f"Calendar event {event_id} not found")
        if summary is not None:
            ev.summary = summary
        if description is not None:
            ev.description = description
        if interval is not None:
            ev.interval = interval

    def delete_event(self, event_id: str, calendar_id: Optional[str]) -> None:
        self._enter("delete_event")
        self.events.pop((self._calendar(calendar_id), event_id), None)
