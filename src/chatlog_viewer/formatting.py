"""Inline formatting for chat messages.

Message bodies come straight from IRC, so they can carry the usual control
codes for bold, italic, underline and color, and they often contain bare
URLs. ``format_message`` turns such a body into safe HTML in two passes:

1. ``tokenize`` splits the text into plain text, links and control codes.
   Control codes are split off first, so a URL right after a color code
   is still linked. URLs never contain control characters, so no code is
   ever read from inside a link.
2. ``build_tree`` runs the codes through a small state machine that keeps a
   stack of open style spans. The resulting tree is always properly nested,
   whatever order the codes came in, and ``serialize`` escapes every piece
   of literal text on the way out.
"""

import html
import re
from dataclasses import dataclass, field
from typing import List, Optional, Union

from markupsafe import Markup

BOLD = "\x02"
COLOR = "\x03"
RESET = "\x0f"
ITALIC = "\x1d"
UNDERLINE = "\x1f"
# Monospace, reverse and strikethrough are recognised but not rendered
IGNORED_CODES = "\x11\x16\x1e"

TOGGLE_STYLES = {
    BOLD: "bold",
    ITALIC: "italic",
    UNDERLINE: "underline",
}

STYLE_TAGS = {
    "bold": "b",
    "italic": "i",
    "underline": "u",
}

# mIRC color numbers mapped to theme CSS variables
COLOR_TOKENS = (
    "--irc-white",
    "--irc-black",
    "--irc-blue",
    "--irc-green",
    "--irc-red",
    "--irc-brown",
    "--irc-magenta",
    "--irc-orange",
    "--irc-yellow",
    "--irc-light-green",
    "--irc-cyan",
    "--irc-light-cyan",
    "--irc-light-blue",
    "--irc-pink",
    "--irc-grey",
    "--irc-light-grey",
)
DEFAULT_FOREGROUND = "--irc-default-fg"
DEFAULT_BACKGROUND = "--irc-default-bg"

URL_PATTERN = re.compile(
    r"""
    \b(?:https?|ftp|file)://
    [^\s<>"\x00-\x1f\x7f]*                  # anything up to whitespace
    [^\s<>"\x00-\x1f\x7f.,;:!?'()\[\]{}]    # but never end on punctuation
    """,
    re.VERBOSE | re.IGNORECASE,
)

CODE_PATTERN = re.compile(
    r"\x03(?:(\d{1,2})(?:,(\d{1,2}))?)?|[\x02\x0f\x1d\x1f\x11\x16\x1e]"
)


@dataclass(frozen=True)
class Link:
    url: str


@dataclass(frozen=True)
class Code:
    code: str
    foreground: Optional[int] = None
    background: Optional[int] = None


Token = Union[str, Link, Code]


@dataclass
class Span:
    """A style scope in the formatted message tree.

    The root of the tree has no style. Color spans carry the mIRC color
    numbers they were opened with.
    """

    style: Optional[str] = None
    foreground: Optional[int] = None
    background: Optional[int] = None
    children: List[Union[str, Link, "Span"]] = field(default_factory=list)

    def copy_style(self) -> "Span":
        return Span(self.style, self.foreground, self.background)


def _tokenize_codes(text: str) -> List[Token]:
    tokens: List[Token] = []
    pos = 0
    for match in CODE_PATTERN.finditer(text):
        if match.start() > pos:
            tokens.append(text[pos : match.start()])
        code = match.group(0)[0]
        fg, bg = match.group(1), match.group(2)
        tokens.append(
            Code(
                code,
                int(fg) if fg is not None else None,
                int(bg) if bg is not None else None,
            )
        )
        pos = match.end()
    if pos < len(text):
        tokens.append(text[pos:])
    return tokens


def _tokenize_links(text: str) -> List[Token]:
    tokens: List[Token] = []
    pos = 0
    for match in URL_PATTERN.finditer(text):
        if match.start() > pos:
            tokens.append(text[pos : match.start()])
        tokens.append(Link(match.group(0)))
        pos = match.end()
    if pos < len(text):
        tokens.append(text[pos:])
    return tokens


def tokenize(text: str) -> List[Token]:
    """Split raw message text into text, link and control-code tokens."""
    tokens: List[Token] = []
    for token in _tokenize_codes(text):
        if isinstance(token, str):
            tokens.extend(_tokenize_links(token))
        else:
            tokens.append(token)
    return tokens


class _TreeBuilder:
    def __init__(self):
        self.root = Span()
        self.stack = [self.root]

    def add(self, child):
        self.stack[-1].children.append(child)

    def open(self, span: Span):
        self.add(span)
        self.stack.append(span)

    def find(self, style: str) -> Optional[Span]:
        for span in reversed(self.stack[1:]):
            if span.style == style:
                return span
        return None

    def close(self, style: str):
        if self.find(style) is None:
            return
        # Close everything above the scope, then reopen it inside the parent
        reopen = []
        while True:
            span = self.stack.pop()
            if span.style == style:
                break
            reopen.append(span)
        for span in reversed(reopen):
            self.open(span.copy_style())

    def toggle(self, style: str):
        if self.find(style) is not None:
            self.close(style)
        else:
            self.open(Span(style))

    def color(self, foreground: Optional[int], background: Optional[int]):
        current = self.find("color")
        if foreground is None:
            self.close("color")
            return
        if background is None and current is not None:
            background = current.background
        self.close("color")
        self.open(Span("color", foreground, background))


def build_tree(tokens: List[Token]) -> Span:
    """Build a properly nested span tree from a token stream."""
    builder = _TreeBuilder()
    for token in tokens:
        if isinstance(token, Code):
            if token.code in TOGGLE_STYLES:
                builder.toggle(TOGGLE_STYLES[token.code])
            elif token.code == COLOR:
                builder.color(token.foreground, token.background)
            elif token.code == RESET:
                builder.close("color")
        elif token:
            builder.add(token)
    return builder.root


def color_token(index: Optional[int], default: str = DEFAULT_FOREGROUND) -> str:
    """Get the theme variable for an mIRC color number."""
    if index is None or not 0 <= index < len(COLOR_TOKENS):
        return default
    return COLOR_TOKENS[index]


def _color_style(span: Span) -> str:
    style = f"color: var({color_token(span.foreground)})"
    if span.background is not None:
        background = color_token(span.background, DEFAULT_BACKGROUND)
        style += f"; background-color: var({background})"
    return style


def serialize(node: Union[str, Link, Span]) -> str:
    """Serialize a span tree to HTML, escaping all literal text."""
    if isinstance(node, str):
        return html.escape(node, quote=False)
    if isinstance(node, Link):
        return (
            f'<a href="{html.escape(node.url)}" target="_blank" '
            f'rel="noopener noreferrer">{html.escape(node.url, quote=False)}</a>'
        )
    inner = "".join(serialize(child) for child in node.children)
    if node.style is None:
        return inner
    if not inner:
        return ""
    if node.style == "color":
        return f'<span class="irc-color" style="{_color_style(node)}">{inner}</span>'
    tag = STYLE_TAGS[node.style]
    return f"<{tag}>{inner}</{tag}>"


def format_message(text) -> Markup:
    """Convert a raw message body into safe HTML."""
    if not text:
        return Markup("")
    if not isinstance(text, str):
        text = str(text)
    return Markup(serialize(build_tree(tokenize(text))))
