"""Transient notices shown by the viewer."""

import asyncio
import itertools
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional

INFO = "info"
ERROR = "error"


@dataclass
class Notice:
    id: int
    message: str
    kind: str = INFO
    timeout: float = 3.0
    _handle: Optional[asyncio.TimerHandle] = field(default=None, repr=False, compare=False)


class NoticeBoard:
    """Notices that remove themselves after a timeout.

    Every posted notice is hidden exactly once, whether it expires, is
    dismissed early, or the board is closed.
    """

    def __init__(
        self,
        show: Callable[[Notice], None],
        hide: Callable[[Notice], None],
        timeout: float = 3.0,
    ):
        self._show = show
        self._hide = hide
        self.timeout = timeout
        self._ids = itertools.count(1)
        self._active: Dict[int, Notice] = {}

    @property
    def active(self) -> List[Notice]:
        return list(self._active.values())

    def post(self, message: str, kind: str = INFO) -> Notice:
        notice = Notice(next(self._ids), message, kind, self.timeout)
        self._active[notice.id] = notice
        self._show(notice)
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            loop = None
        if loop is not None:
            notice._handle = loop.call_later(self.timeout, self._expire, notice.id)
        return notice

    def _expire(self, notice_id: int):
        notice = self._active.pop(notice_id, None)
        if notice is not None:
            notice._handle = None
            self._hide(notice)

    def dismiss(self, notice_id: int) -> bool:
        notice = self._active.pop(notice_id, None)
        if notice is None:
            return False
        if notice._handle is not None:
            notice._handle.cancel()
            notice._handle = None
        self._hide(notice)
        return True

    def close(self):
        for notice_id in list(self._active):
            self.dismiss(notice_id)
