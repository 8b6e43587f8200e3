"""Deterministic author colors."""

# Author colors used by the log viewer
PALETTE = (
    "#7b8d43",
    "#ada63e",
    "#a27943",
    "#8a5d3c",
    "#eabe5b",
    "#edefe2",
    "#ea92a8",
    "#5587bc",
    "#4ec0c9",
    "#8d4986",
    "#4e5a98",
)

_INT32_MIN = -(2**31)


def hash_code(text: str) -> int:
    """Return the Java-style ``String.hashCode`` of a string.

    The hash is computed over UTF-16 code units with 32-bit signed
    wrap-around, so characters outside the BMP count as two units.
    """
    data = text.encode("utf-16-le", "surrogatepass")
    h = 0
    for i in range(0, len(data), 2):
        unit = data[i] | (data[i + 1] << 8)
        h = (h * 31 + unit) & 0xFFFFFFFF
    if h >= 2**31:
        h -= 2**32
    return h


def color_for(name: str, palette_size: int = len(PALETTE)) -> int:
    """Map an author name to a palette index."""
    h = hash_code(name)
    if h == _INT32_MIN:
        # abs() has no 32-bit representation here
        h = 0
    return abs(h) % palette_size


def author_color(name: str) -> str:
    """Get the palette color for an author name."""
    return PALETTE[color_for(name)]
