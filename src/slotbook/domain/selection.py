"""Calendar range selection as a pure reducer.

``reduce_selection(state, event) -> state`` models click and hover
interaction on an availability calendar without any rendering layer:

- first click on an available day starts a selection;
- a click before the start restarts the selection there;
- a click after the start completes the range, the clicked day being the
  check-out date (end exclusive);
- a click on the start day itself changes nothing;
- a click when a range is complete starts a new selection;
- clicks on unavailable days are ignored;
- hover only affects the preview range while a selection is open.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import date

from slotbook.domain.models import DateRange, DayState, DayStatus

_SELECTABLE = (DayState.AVAILABLE, DayState.PARTIAL)


@dataclass(frozen=True)
class SelectionState:
    start: date | None = None
    end: date | None = None
    hovered: date | None = None

    @property
    def is_complete(self) -> bool:
        return self.start is not None and self.end is not None

    def selected_range(self) -> DateRange | None:
        if not self.is_complete:
            return None
        return DateRange(self.start, self.end)

    def preview_contains(self, day: date) -> bool:
        if self.start is None:
            return False
        last = self.end or self.hovered
        if last is None:
            return False
        return self.start <= day <= last


@dataclass(frozen=True)
class DayClicked:
    day: DayStatus


@dataclass(frozen=True)
class DayHovered:
    day: date | None


@dataclass(frozen=True)
class SelectionCleared:
    pass


SelectionEvent = DayClicked | DayHovered | SelectionCleared


def reduce_selection(state: SelectionState, event: SelectionEvent) -> SelectionState:
    if isinstance(event, SelectionCleared):
        return SelectionState()

    if isinstance(event, DayHovered):
        if state.start is None or state.is_complete:
            return state
        return replace(state, hovered=event.day)

    if isinstance(event, DayClicked):
        if event.day.status not in _SELECTABLE:
            return state
        clicked = event.day.date
        if state.start is None or state.is_complete or clicked < state.start:
            return SelectionState(start=clicked)
        if clicked == state.start:
            return state
        return SelectionState(start=state.start, end=clicked)

    raise TypeError(f"unknown selection event: {event!r}")
