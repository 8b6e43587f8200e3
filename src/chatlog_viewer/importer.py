"""Import service for fetching daily plain-text logs into the database."""

import re
import threading
import time
from datetime import date as Date
from datetime import datetime, timedelta
from typing import List, Optional, Tuple

import httpx
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from .models import Message

# Log lines look like: [12:34:56] <nick> message text
LINE_PATTERN = re.compile(r"^\[(\d{2}:\d{2}:\d{2})\] <([^>]+)> (.+)")

_import_lock = threading.Lock()


class ImportRunningError(Exception):
    """Raised when an import is started while another one is running."""

    pass


def parse_log_text(text: str, day: Date, cut_offset: int = -1) -> List[dict]:
    """
    Parse one day's log file into message rows.

    Args:
        text: Contents of the log file
        day: Date the log file belongs to
        cut_offset: Lines up to and including this offset are skipped

    Returns:
        List of dicts with timestamp, offset, author and body
    """
    rows = []
    for offset, line in enumerate(text.splitlines()):
        if offset <= cut_offset:
            continue
        match = LINE_PATTERN.match(line)
        if not match:
            continue
        try:
            clock = datetime.strptime(match.group(1), "%H:%M:%S").time()
        except ValueError:
            print(f"Invalid message time, skipping: {day} {match.group(1)}")
            continue
        rows.append(
            {
                "timestamp": datetime.combine(day, clock),
                "offset": offset,
                "author": match.group(2),
                "body": match.group(3),
            }
        )
    return rows


def download_log(client: httpx.Client, url_template: str, day: Date) -> str:
    """
    Download the log file for a day.

    Returns the decoded text, or an empty string if there is no log for that day.
    Raises httpx.HTTPError on network/server errors.
    """
    response = client.get(
        url_template.format(date=day.isoformat()), timeout=60.0, follow_redirects=True
    )
    if response.status_code == 404:
        return ""
    response.raise_for_status()
    return response.content.decode("utf-8", errors="replace")


def get_latest_message(db_session: Session) -> Optional[Tuple[int, Date]]:
    """Return ``(offset, date)`` of the newest stored message, if any."""
    message = (
        db_session.query(Message)
        .order_by(Message.timestamp.desc(), Message.offset.desc())
        .first()
    )
    if message is None:
        return None
    return message.offset, message.timestamp.date()


def import_day(
    db_session: Session,
    client: httpx.Client,
    day: Date,
    url_template: str,
    channel: str,
    cut_offset: int = -1,
) -> int:
    """
    Import a single day's log.

    Messages already stored for that day past ``cut_offset`` are replaced.

    Returns:
        Number of messages inserted
    """
    rows = parse_log_text(download_log(client, url_template, day), day, cut_offset)

    start = datetime.combine(day, datetime.min.time())
    end = start + timedelta(days=1)
    db_session.query(Message).filter(
        Message.timestamp >= start,
        Message.timestamp < end,
        Message.offset > cut_offset,
    ).delete(synchronize_session=False)
    db_session.add_all(Message(channel=channel, **row) for row in rows)
    db_session.commit()
    return len(rows)


def import_logs(
    db_session: Session,
    url_template: str,
    channel: str,
    start: Optional[Date] = None,
    today: Optional[Date] = None,
    client: Optional[httpx.Client] = None,
) -> dict:
    """
    Import every day from ``start`` up to today.

    Without a start date the import resumes after the newest stored message.

    Returns:
        Dictionary with import statistics
    """
    if not _import_lock.acquire(blocking=False):
        raise ImportRunningError("Import already running")

    own_client = client is None
    if own_client:
        client = httpx.Client()
    try:
        started = time.monotonic()
        cut_offset = -1
        if start is None:
            latest = get_latest_message(db_session)
            if latest is None:
                raise LookupError("Cannot get start date, the database is empty")
            cut_offset, start = latest

        today = today or Date.today()
        count = 0
        errors = 0
        day = start
        while day <= today:
            try:
                count += import_day(
                    db_session, client, day, url_template, channel, cut_offset
                )
            except (httpx.HTTPError, SQLAlchemyError) as e:
                print(f"Error importing logs for {day}: {e}")
                db_session.rollback()
                errors += 1
            cut_offset = -1
            day += timedelta(days=1)

        return {
            "count": count,
            "errors": errors,
            "elapsed_time": int((time.monotonic() - started) * 1000),
        }
    finally:
        if own_client:
            client.close()
        _import_lock.release()
