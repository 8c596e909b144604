from __future__ import annotations

from datetime import datetime
from typing import List, Optional, Protocol

from .intervals import BusyBlock, TimeInterval


class CalendarGateway(Protocol):
    """
    Remote calendar that owns doctor availability.

    ``calendar_id=None`` means the clinic default calendar. Every method raises
    ExternalUnavailable on any failure, timeouts included.
    """

    def list_busy(self, window_start: datetime, window_end: datetime, calendar_id: Optional[str] = None) -> List[BusyBlock]:
        ...

    def insert_event(self, calendar_id: Optional[str], summary: str, description: str, interval: TimeInterval) -> str:
        ...

    def update_event(
        self,
        event_id: str,
        calendar_id: Optional[str],
        summary: Optional[str] = None,
        description: Optional[str] = None,
        interval: Optional[TimeInterval] = None,
    ) -> None:
        ...

    def delete_event(self, event_id: str, calendar_id: Optional[str]) -> None:
        ...
