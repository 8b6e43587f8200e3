"""Date navigation state for the log viewer.

Dates are kept newest first, as the backend returns them, so index 0 is the
most recent day. ``next`` moves toward newer dates and ``previous`` toward
older ones.
"""

from typing import Callable, List, Optional, Sequence, Tuple

BEGINNING_NOTICE = "Already at the beginning"
END_NOTICE = "Already at the end"


class NavigationState:
    """Known dates and the index of the date being displayed.

    ``on_change(index, date)`` is called once after every change of the
    current index, and is where the date picker and the current-date label
    get updated together. ``on_boundary(message)`` receives the notice for
    navigation that cannot move.
    """

    def __init__(
        self,
        on_change: Optional[Callable[[int, str], None]] = None,
        on_boundary: Optional[Callable[[str], None]] = None,
    ):
        self.dates: List[str] = []
        self.current_index: Optional[int] = None
        self._on_change = on_change
        self._on_boundary = on_boundary

    @property
    def resolved(self) -> bool:
        return self.current_index is not None

    @property
    def current_date(self) -> Optional[str]:
        if not self.resolved:
            return None
        return self.dates[self.current_index]

    @property
    def bounds(self) -> Optional[Tuple[str, str]]:
        """Return ``(oldest, newest)`` or None before dates are loaded."""
        if not self.dates:
            return None
        return self.dates[-1], self.dates[0]

    def index_of(self, date: Optional[str]) -> Optional[int]:
        try:
            return self.dates.index(date)
        except ValueError:
            return None

    def initialize(self, dates: Sequence[str], requested: Optional[str] = None) -> Optional[int]:
        """Load the date list and select ``requested``, or the newest date.

        Returns the selected index, or None when there are no dates at all.
        """
        self.dates = list(dates)
        if not self.dates:
            self.current_index = None
            return None
        index = self.index_of(requested)
        self.set_current_date(index if index is not None else 0)
        return self.current_index

    def set_current_date(self, index: int) -> str:
        """Make ``index`` current and notify the change listener.

        The index is clamped into range. Returns the selected date.
        """
        if not self.dates:
            raise LookupError("No dates loaded")
        index = max(0, min(index, len(self.dates) - 1))
        self.current_index = index
        date = self.dates[index]
        if self._on_change is not None:
            self._on_change(index, date)
        return date

    def _boundary(self, message: str):
        if self._on_boundary is not None:
            self._on_boundary(message)

    def next(self) -> Optional[str]:
        """Move to the next newer date, returning it, or None at the boundary."""
        if not self.resolved:
            return None
        if self.current_index == 0:
            self._boundary(BEGINNING_NOTICE)
            return None
        return self.set_current_date(self.current_index - 1)

    def previous(self) -> Optional[str]:
        """Move to the next older date, returning it, or None at the boundary."""
        if not self.resolved:
            return None
        if self.current_index == len(self.dates) - 1:
            self._boundary(END_NOTICE)
            return None
        return self.set_current_date(self.current_index + 1)

    def jump(self, date: str) -> Optional[str]:
        """Move to a specific date if it is known."""
        if not self.resolved:
            return None
        index = self.index_of(date)
        if index is None:
            self._boundary(f"No logs for {date}")
            return None
        return self.set_current_date(index)
