"""Render message records into HTML fragments."""

from dataclasses import dataclass
from typing import Dict, Iterable, List, Union

from jinja2 import Environment, PackageLoader
from markupsafe import Markup

from .colors import author_color
from .formatting import format_message
from .records import MessageRecord

# Set up Jinja2 environment
_jinja_env = Environment(
    loader=PackageLoader("chatlog_viewer", "templates"),
    autoescape=True,
)

# Load macros template and expose macros
_macros_template = _jinja_env.get_template("macros.html")
_macros = _macros_template.module


def get_template(name):
    """Get a Jinja2 template by name."""
    return _jinja_env.get_template(name)


@dataclass(frozen=True)
class MessageFragment:
    """A rendered message, usable directly inside templates."""

    element_id: str
    href: str
    time: str
    author: str
    color: str
    body: Markup

    def __html__(self):
        return _macros.message(self)


@dataclass(frozen=True)
class DateHeader:
    date: str

    def __html__(self):
        return _macros.date_header(self.date)


Fragment = Union[MessageFragment, DateHeader]


def render_message(record: MessageRecord, search: bool = False) -> MessageFragment:
    """Render one record.

    In a date view the anchor is both the element id and the ``#anchor``
    link. Search results span several dates, so their ids are prefixed with
    the date and their links point at the message in its date view.
    """
    anchor = str(record.anchor)
    if search:
        element_id = f"{record.date}-{anchor}"
        href = f"/{record.date}#{anchor}"
    else:
        element_id = anchor
        href = f"#{anchor}"
    return MessageFragment(
        element_id=element_id,
        href=href,
        time=record.time_of_day,
        author=record.author,
        color=author_color(record.author),
        body=format_message(record.body),
    )


def render_messages(records: Iterable[MessageRecord]) -> List[MessageFragment]:
    return [render_message(record) for record in records]


def render_date_header(date: str) -> DateHeader:
    return DateHeader(date)


def render_search_results(grouped: Dict[str, List[MessageRecord]]) -> List[Fragment]:
    """Render grouped search results, one header per date."""
    fragments: List[Fragment] = []
    for date, records in grouped.items():
        fragments.append(render_date_header(date))
        fragments.extend(render_message(record, search=True) for record in records)
    return fragments


def fragments_to_html(fragments: Iterable[Fragment]) -> Markup:
    return Markup("\n").join(fragments)
