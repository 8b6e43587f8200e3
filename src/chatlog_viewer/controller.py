"""The log viewer controller.

``ViewController`` works out which view a URL asks for, fetches what it
needs from a backend, and paints the result through a ``RenderTarget``.
It runs on a single asyncio loop; backend calls are the only places it
waits. Each navigation takes a new epoch number, and a response that comes
back after a newer navigation has started is thrown away.
"""

import asyncio
import enum
from dataclasses import dataclass
from typing import List, Optional, Union
from urllib.parse import parse_qs, quote, unquote, urlsplit

from .backend import BackendError
from .navigation import NavigationState
from .notices import ERROR, INFO, Notice, NoticeBoard
from .records import group_by_date
from .render import Fragment, render_messages, render_search_results

DEFAULT_COLLAPSE_WIDTH = 800


@dataclass(frozen=True)
class DefaultView:
    """A single day of logs. ``date`` of None means the latest day."""

    date: Optional[str] = None
    anchor: Optional[str] = None


@dataclass(frozen=True)
class SearchView:
    query: Optional[str] = None


RouteTarget = Union[DefaultView, SearchView]


def parse_route(url: str) -> RouteTarget:
    """Work out the view for a URL.

    ``/search?q=...`` is the search view. Anything else is a date view: the
    first path segment is the date, and the message to scroll to comes from
    the fragment or an ``offset`` query parameter. Old-style hash routes
    such as ``/#/2023-10-20/103`` are understood too.
    """
    parts = urlsplit(url)
    params = parse_qs(parts.query)
    segments = [unquote(s) for s in parts.path.split("/") if s]
    fragment = unquote(parts.fragment)

    if segments and segments[0] == "search":
        query = params.get("q", [""])[0].strip()
        return SearchView(query or None)

    if not segments and fragment.startswith("/"):
        segments = [s for s in fragment.split("/") if s]
        fragment = segments[1] if len(segments) > 1 else ""

    date = segments[0] if segments else None
    if date == "latest":
        date = None
    anchor = fragment or params.get("offset", [""])[0] or None
    return DefaultView(date, anchor)


class ViewState(enum.Enum):
    UNINITIALIZED = "uninitialized"
    LOADING = "loading"
    READY = "ready"
    SEARCH_LOADING = "search-loading"
    SEARCH_READY = "search-ready"


class RenderTarget:
    """Everything the controller needs from the page it draws on.

    ``begin_loading`` hides the navigation chrome and the current content
    behind a loading indicator. ``paint`` replaces the content, removes the
    indicator and brings the chrome back. ``cancel_loading`` removes the
    indicator and shows whatever was there before.
    """

    def begin_loading(self):
        raise NotImplementedError

    def paint(
        self,
        fragments: List[Fragment],
        anchor: Optional[str] = None,
        scroll_bottom: bool = False,
        empty_message: Optional[str] = None,
    ):
        raise NotImplementedError

    def cancel_loading(self):
        raise NotImplementedError

    def set_current_date(self, date: str):
        """Update the date picker value and the current-date label."""
        raise NotImplementedError

    def set_date_bounds(self, oldest: str, newest: str):
        raise NotImplementedError

    def set_controls_enabled(self, enabled: bool):
        raise NotImplementedError

    def set_search_query(self, query: str):
        raise NotImplementedError

    def set_location(self, path: str):
        raise NotImplementedError

    def set_collapsed(self, collapsed: bool):
        raise NotImplementedError

    def show_notice(self, notice: Notice):
        raise NotImplementedError

    def hide_notice(self, notice: Notice):
        raise NotImplementedError

    def play_error_cue(self):
        raise NotImplementedError


class Layout:
    """Collapse state of the date navigation controls.

    Below ``collapse_width`` the controls collapse by default, and the
    collapse toggle can override that. Going back above the threshold
    expands them and forgets the override.
    """

    def __init__(self, collapse_width: int = DEFAULT_COLLAPSE_WIDTH):
        self.collapse_width = collapse_width
        self.width: Optional[int] = None
        self.override: Optional[bool] = None

    @property
    def narrow(self) -> bool:
        return self.width is not None and self.width < self.collapse_width

    @property
    def collapsed(self) -> bool:
        if not self.narrow:
            return False
        return self.override if self.override is not None else True

    def resize(self, width: int):
        self.width = width
        if not self.narrow:
            self.override = None

    def toggle(self) -> bool:
        if not self.narrow:
            return False
        self.override = not self.collapsed
        return True


class ViewController:
    def __init__(
        self,
        backend,
        target: RenderTarget,
        notice_timeout: float = 3.0,
        collapse_width: int = DEFAULT_COLLAPSE_WIDTH,
    ):
        self.backend = backend
        self.target = target
        self.state = ViewState.UNINITIALIZED
        self.route: Optional[RouteTarget] = None
        self.notices = NoticeBoard(target.show_notice, target.hide_notice, notice_timeout)
        self.navigation = NavigationState(
            on_change=self._date_changed, on_boundary=self.notices.post
        )
        self.layout = Layout(collapse_width)
        self._epoch = 0
        self._settled_state = ViewState.UNINITIALIZED
        self._displayed_index: Optional[int] = None
        self._layout_pending = False

    def _date_changed(self, index: int, date: str):
        self.target.set_current_date(date)

    # Loading transitions

    def _begin(self, state: ViewState) -> int:
        self._epoch += 1
        self.state = state
        self.target.begin_loading()
        return self._epoch

    def _is_current(self, epoch: int) -> bool:
        return epoch == self._epoch

    def _settle(self, state: ViewState):
        self.state = state
        self._settled_state = state
        if self._layout_pending:
            self._layout_pending = False
            self.target.set_collapsed(self.layout.collapsed)

    def _fail(self, epoch: int, message: str):
        if not self._is_current(epoch):
            return
        self.target.cancel_loading()
        if (
            self._displayed_index is not None
            and self.navigation.current_index != self._displayed_index
        ):
            self.navigation.set_current_date(self._displayed_index)
        self._settle(self._settled_state)
        self.notices.post(message, ERROR)
        self.target.play_error_cue()

    def _paint_day(self, records, anchor: Optional[str] = None):
        self.target.paint(
            render_messages(records),
            anchor=anchor,
            scroll_bottom=anchor is None,
            empty_message="No logs for this date",
        )

    # Entry point

    async def start(self, url: str):
        """Resolve the route for ``url`` and load its view."""
        if self.state is not ViewState.UNINITIALIZED:
            raise RuntimeError("View already started")
        self.route = parse_route(url)
        if isinstance(self.route, SearchView):
            self.target.set_controls_enabled(False)
            await self._search(self.route.query, update_location=False)
        else:
            await self._load_initial(self.route)

    async def _load_initial(self, route: DefaultView):
        epoch = self._begin(ViewState.LOADING)
        self.target.set_controls_enabled(False)
        anchor = route.anchor
        requested = route.date
        try:
            dates, records = await asyncio.gather(
                self.backend.fetch_dates(),
                self.backend.fetch_logs(requested),
                return_exceptions=True,
            )
            if isinstance(dates, BaseException):
                raise dates
        except BackendError as e:
            self._fail(epoch, f"Could not load logs: {e}")
            return
        fell_back = requested is not None and requested not in dates
        if fell_back:
            requested, anchor = None, None
            if not self._is_current(epoch):
                return
            try:
                records = await self.backend.fetch_logs(dates[0] if dates else None)
            except BackendError as e:
                records = e
        elif isinstance(records, BaseException) and not isinstance(records, BackendError):
            raise records
        if not self._is_current(epoch):
            return

        index = self.navigation.initialize(dates, requested)
        self._displayed_index = index
        if index is not None:
            self.target.set_date_bounds(*self.navigation.bounds)
            self.target.set_controls_enabled(True)
            if fell_back:
                self.target.set_location(f"/{self.navigation.current_date}")
        if isinstance(records, BackendError):
            # The date list loaded, so paging to another day still works
            self._settled_state = ViewState.READY
            self._fail(epoch, f"Could not load logs: {records}")
            return
        self._paint_day(records, anchor)
        self._settle(ViewState.READY)

    # Date navigation

    async def show_date(self, date: str) -> bool:
        """Load the logs for ``date``, which must already be current."""
        epoch = self._begin(ViewState.LOADING)
        try:
            records = await self.backend.fetch_logs(date)
        except BackendError as e:
            self._fail(epoch, f"Could not load logs for {date}: {e}")
            return False
        if not self._is_current(epoch):
            return False
        self._paint_day(records)
        self._displayed_index = self.navigation.current_index
        self.target.set_location(f"/{date}")
        self._settle(ViewState.READY)
        return True

    async def next(self) -> bool:
        """Go one day newer."""
        date = self.navigation.next()
        if date is None:
            return False
        return await self.show_date(date)

    async def previous(self) -> bool:
        """Go one day older."""
        date = self.navigation.previous()
        if date is None:
            return False
        return await self.show_date(date)

    async def jump(self, date: str) -> bool:
        """Go to a date picked in the date input."""
        date = self.navigation.jump(date)
        if date is None:
            return False
        return await self.show_date(date)

    # Search

    async def search(self, query: str) -> bool:
        query = (query or "").strip()
        if not query:
            self.notices.post("Enter a search query", INFO)
            return False
        return await self._search(query, update_location=True)

    async def _search(self, query: Optional[str], update_location: bool) -> bool:
        self.target.set_search_query(query or "")
        epoch = self._begin(ViewState.SEARCH_LOADING)
        if not query:
            self.target.paint([], empty_message="Search parameter is missing")
            self._settle(ViewState.SEARCH_READY)
            return False
        try:
            records = await self.backend.search(query)
        except BackendError as e:
            self._fail(epoch, f"Search failed: {e}")
            return False
        if not self._is_current(epoch):
            return False
        self.target.paint(
            render_search_results(group_by_date(records)), empty_message="No results"
        )
        if update_location:
            self.target.set_location(f"/search?q={quote(query)}")
        self._settle(ViewState.SEARCH_READY)
        return True

    # Layout

    def _apply_layout(self):
        if self.state in (ViewState.LOADING, ViewState.SEARCH_LOADING):
            self._layout_pending = True
        else:
            self.target.set_collapsed(self.layout.collapsed)

    def resize(self, width: int):
        self.layout.resize(width)
        self._apply_layout()

    def toggle_collapse(self) -> bool:
        if not self.layout.toggle():
            return False
        self._apply_layout()
        return True

    def close(self):
        """Drop any in-flight navigation and remove all notices."""
        self._epoch += 1
        self.notices.close()
