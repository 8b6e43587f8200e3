"""Message records as returned by the log backend."""

from dataclasses import dataclass
from typing import Dict, Iterable, List, Union


@dataclass(frozen=True)
class MessageRecord:
    """A single chat message.

    ``timestamp`` is an ISO-8601 string such as ``2023-10-20T12:34:56``.
    ``anchor`` is the message offset within its day and doubles as the
    element id used for deep links.
    """

    timestamp: str
    author: str
    body: str
    anchor: Union[str, int]

    @classmethod
    def from_json(cls, data: dict) -> "MessageRecord":
        """Build a record from backend JSON.

        Accepts both ``timestamp``/``anchor`` and the older ``time``/``offset``
        field names. Raises ValueError for records that lack them.
        """
        if not isinstance(data, dict):
            raise ValueError(f"Expected a message object, got {type(data).__name__}")
        timestamp = data.get("timestamp", data.get("time"))
        anchor = data.get("anchor", data.get("offset"))
        if timestamp is None or anchor is None:
            raise ValueError("Message record needs a timestamp and an anchor")
        return cls(
            timestamp=str(timestamp),
            author=str(data.get("author") or ""),
            body=str(data.get("body") or ""),
            anchor=anchor,
        )

    def to_json(self) -> dict:
        return {
            "timestamp": self.timestamp,
            "author": self.author,
            "body": self.body,
            "anchor": self.anchor,
        }

    def _split(self):
        for sep in ("T", " "):
            if sep in self.timestamp:
                date, time = self.timestamp.split(sep, 1)
                return date, time
        return self.timestamp, ""

    @property
    def date(self) -> str:
        return self._split()[0]

    @property
    def time_of_day(self) -> str:
        # Drop fractional seconds and any zone suffix
        return self._split()[1][:8]


def group_by_date(records: Iterable[MessageRecord]) -> Dict[str, List[MessageRecord]]:
    """Group records by date.

    Groups appear in the order their first record was seen and keep the
    original record order within each group.
    """
    grouped: Dict[str, List[MessageRecord]] = {}
    for record in records:
        grouped.setdefault(record.date, []).append(record)
    return grouped
