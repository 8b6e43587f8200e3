"""Server-side render target that produces a complete viewer page."""

from typing import Dict, List, Optional, Tuple

from markupsafe import Markup

from .controller import DEFAULT_COLLAPSE_WIDTH, RenderTarget
from .notices import Notice
from .render import Fragment, fragments_to_html, get_template


class HtmlPage(RenderTarget):
    """Collects what the controller paints and renders it as HTML.

    The page keeps the last painted content while a load is in progress, so
    a failed load can put it back.
    """

    def __init__(self, title: str = "Chat logs", collapse_width: int = DEFAULT_COLLAPSE_WIDTH):
        self.title = title
        self.collapse_width = collapse_width
        self.fragments: List[Fragment] = []
        self.empty_message: Optional[str] = None
        self.painted = False
        self.loading = False
        self.chrome_visible = False
        self.anchor: Optional[str] = None
        self.scroll_bottom = False
        self.current_date: Optional[str] = None
        self.date_bounds: Optional[Tuple[str, str]] = None
        self.controls_enabled = False
        self.search_query = ""
        self.location: Optional[str] = None
        self.collapsed = False
        self.notices: Dict[int, Notice] = {}
        self.error_cue = False

    def begin_loading(self):
        self.loading = True
        self.chrome_visible = False

    def paint(self, fragments, anchor=None, scroll_bottom=False, empty_message=None):
        self.fragments = list(fragments)
        self.empty_message = empty_message
        self.anchor = anchor
        self.scroll_bottom = scroll_bottom
        self.painted = True
        self.loading = False
        self.chrome_visible = True

    def cancel_loading(self):
        self.loading = False
        self.chrome_visible = self.painted

    def set_current_date(self, date):
        self.current_date = date

    def set_date_bounds(self, oldest, newest):
        self.date_bounds = (oldest, newest)

    def set_controls_enabled(self, enabled):
        self.controls_enabled = enabled

    def set_search_query(self, query):
        self.search_query = query

    def set_location(self, path):
        self.location = path

    def set_collapsed(self, collapsed):
        self.collapsed = collapsed

    def show_notice(self, notice):
        self.notices[notice.id] = notice

    def hide_notice(self, notice):
        self.notices.pop(notice.id, None)

    def play_error_cue(self):
        self.error_cue = True

    @property
    def content(self) -> Markup:
        return fragments_to_html(self.fragments)

    def render(self) -> str:
        return get_template("viewer.html").render(page=self)
