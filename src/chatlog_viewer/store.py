"""Queries against the message database."""

import operator
import re
import threading
from dataclasses import dataclass
from datetime import date as Date
from datetime import datetime, time, timedelta
from typing import List, Optional, Tuple, Union

from sqlalchemy import and_, func, not_, or_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from .backend import BackendError
from .models import Message
from .records import MessageRecord

SEARCH_LIMIT = 1000
DATETIME_FORMAT = "%Y-%m-%d %H:%M:%S"


class QueryError(Exception):
    """Raised when a search query cannot be parsed."""

    pass


def parse_date(value) -> Date:
    """Parse a ``YYYY-MM-DD`` string, raising LookupError if it is not one."""
    try:
        return Date.fromisoformat(value)
    except (TypeError, ValueError):
        raise LookupError(f"Not a date: {value}")


def _date_str(value) -> str:
    # SQLite returns DATE() as a string, PostgreSQL as a date
    return value.isoformat() if hasattr(value, "isoformat") else str(value)


def list_dates(db_session: Session) -> List[str]:
    """Return every date that has messages, newest first."""
    day = func.date(Message.timestamp)
    rows = db_session.query(day).distinct().order_by(day.desc()).all()
    return [_date_str(row[0]) for row in rows if row[0] is not None]


def logs_for_date(db_session: Session, day: Date) -> List[Message]:
    start = datetime.combine(day, time.min)
    end = start + timedelta(days=1)
    return (
        db_session.query(Message)
        .filter(Message.timestamp >= start, Message.timestamp < end)
        .order_by(Message.timestamp, Message.offset)
        .all()
    )


def latest_logs(db_session: Session) -> List[Message]:
    """Return the messages of the most recent day that has any."""
    newest = db_session.query(func.max(Message.timestamp)).scalar()
    if newest is None:
        return []
    return logs_for_date(db_session, newest.date())


def _like_pattern(value: str) -> str:
    value = value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"%{value}%"


COMPARISONS = {
    "!=": operator.ne,
    ">=": operator.ge,
    "<=": operator.le,
    "=": operator.eq,
    "<": operator.lt,
    ">": operator.gt,
}


def _split_comparison(value: str) -> Tuple[str, str]:
    """Split an optional comparison prefix such as ``>=`` off a value."""
    # Two character operators come first so ">=" is not read as ">"
    for symbol in COMPARISONS:
        if value.startswith(symbol):
            return symbol, value[len(symbol) :]
    return "=", value


def _length_condition(value: str):
    symbol, number = _split_comparison(value)
    try:
        length = int(number)
    except ValueError:
        raise QueryError(f"Invalid integer: {number}")
    return COMPARISONS[symbol](func.length(Message.body), length)


def _date_condition(value: str):
    symbol, text = _split_comparison(value)
    try:
        day = Date.fromisoformat(text)
    except ValueError:
        raise QueryError(f"Invalid date: {text}")
    # Compare against the day's bounds rather than a database-specific date cast
    start = datetime.combine(day, time.min)
    end = start + timedelta(days=1)
    timestamp = Message.timestamp
    return {
        "=": and_(timestamp >= start, timestamp < end),
        "!=": or_(timestamp < start, timestamp >= end),
        "<": timestamp < start,
        "<=": timestamp < end,
        ">": timestamp >= end,
        ">=": timestamp >= start,
    }[symbol]


def _datetime_condition(value: str):
    symbol, text = _split_comparison(value)
    try:
        moment = datetime.strptime(text, DATETIME_FORMAT)
    except ValueError:
        raise QueryError(f"Invalid datetime: {text}")
    return COMPARISONS[symbol](Message.timestamp, moment)


def _regex_condition(value: str, ignore_case: bool = False):
    try:
        re.compile(value)
    except re.error as e:
        raise QueryError(f"Invalid regex: {e}")
    if ignore_case:
        value = "(?i)" + value
    return Message.body.regexp_match(value)


SEARCH_FUNCTIONS = {
    "author": lambda value: Message.author == value,
    "channel": lambda value: Message.channel == value,
    "contains": lambda value: Message.body.like(_like_pattern(value), escape="\\"),
    "icontains": lambda value: Message.body.ilike(_like_pattern(value), escape="\\"),
    "like": lambda value: Message.body.like(value),
    "ilike": lambda value: Message.body.ilike(value),
    "regex": _regex_condition,
    "iregex": lambda value: _regex_condition(value, ignore_case=True),
    "length": _length_condition,
    "date": _date_condition,
    "datetime": _datetime_condition,
}

KEYWORDS = ("AND", "OR", "THEN", "NOT")
QUOTES = "'\""
SPECIAL_CHARS = "():" + QUOTES


@dataclass(frozen=True)
class Term:
    """A single ``function:value`` match. Bare words use ``icontains``."""

    name: str
    value: str


@dataclass(frozen=True)
class Negated:
    term: "Expression"


@dataclass(frozen=True)
class AllOf:
    terms: Tuple["Expression", ...]


@dataclass(frozen=True)
class AnyOf:
    terms: Tuple["Expression", ...]


Expression = Union[Term, Negated, AllOf, AnyOf]


def _read_string(query: str, pos: int) -> Tuple[str, int]:
    quote = query[pos]
    chars = []
    pos += 1
    while pos < len(query):
        char = query[pos]
        if char == "\\" and pos + 1 < len(query) and query[pos + 1] in QUOTES + "\\":
            chars.append(query[pos + 1])
            pos += 2
        elif char == quote:
            return "".join(chars), pos + 1
        else:
            chars.append(char)
            pos += 1
    raise QueryError("Malformed query")


def _read_word(query: str, pos: int) -> Tuple[str, int]:
    start = pos
    while pos < len(query) and not query[pos].isspace() and query[pos] not in SPECIAL_CHARS:
        pos += 1
    return query[start:pos], pos


def _lex(query: str) -> List[Tuple[str, object]]:
    """Split a query into ``(kind, value)`` tokens."""
    tokens = []
    pos = 0
    while pos < len(query):
        char = query[pos]
        if char.isspace():
            pos += 1
        elif char in "()":
            tokens.append((char, char))
            pos += 1
        elif char in QUOTES:
            text, pos = _read_string(query, pos)
            tokens.append(("term", Term("icontains", text)))
        elif char == ":":
            raise QueryError("Malformed query")
        else:
            word, pos = _read_word(query, pos)
            if pos < len(query) and query[pos] == ":":
                name = word.lower()
                if name not in SEARCH_FUNCTIONS:
                    raise QueryError(f"Unknown search function: {word}")
                pos += 1
                if pos < len(query) and query[pos] in QUOTES:
                    value, pos = _read_string(query, pos)
                else:
                    value, pos = _read_word(query, pos)
                if not value:
                    raise QueryError(f"Missing value for {word}")
                tokens.append(("term", Term(name, value)))
            elif word in KEYWORDS:
                tokens.append((word, word))
            else:
                tokens.append(("term", Term("icontains", word)))
    return tokens


def _combine(kind, terms):
    return terms[0] if len(terms) == 1 else kind(tuple(terms))


class _QueryParser:
    """Recursive descent over the token list.

    From loosest to tightest: adjacent terms, ``THEN``, ``AND``, ``OR``,
    then ``NOT`` and parentheses.
    """

    def __init__(self, tokens):
        self.tokens = tokens
        self.pos = 0

    def peek(self) -> Optional[str]:
        if self.pos < len(self.tokens):
            return self.tokens[self.pos][0]
        return None

    def take(self):
        token = self.tokens[self.pos]
        self.pos += 1
        return token[1]

    def parse(self) -> Expression:
        expression = self.sequence()
        if self.peek() is not None:
            raise QueryError("Malformed query")
        return expression

    def sequence(self) -> Expression:
        terms = [self.ordered()]
        while self.peek() in ("term", "(", "NOT"):
            terms.append(self.ordered())
        return _combine(AllOf, terms)

    def ordered(self) -> Expression:
        expression = self.conjunction()
        if self.peek() == "THEN":
            raise QueryError("THEN is not supported")
        return expression

    def conjunction(self) -> Expression:
        terms = [self.disjunction()]
        while self.peek() == "AND":
            self.take()
            terms.append(self.disjunction())
        return _combine(AllOf, terms)

    def disjunction(self) -> Expression:
        terms = [self.term()]
        while self.peek() == "OR":
            self.take()
            terms.append(self.term())
        return _combine(AnyOf, terms)

    def term(self) -> Expression:
        kind = self.peek()
        if kind == "NOT":
            self.take()
            if self.peek() not in ("term", "(", "NOT"):
                raise QueryError("NOT must be followed by a term")
            return Negated(self.term())
        if kind == "(":
            self.take()
            expression = self.sequence()
            if self.peek() != ")":
                raise QueryError("Malformed query")
            self.take()
            return expression
        if kind == "term":
            return self.take()
        raise QueryError("Malformed query")


def parse_search_query(query: str) -> Expression:
    """Parse a search query into an expression tree.

    A term is either ``function:value`` or a bare word, which means
    ``icontains``. Values may be quoted with ``"`` or ``'``, and a backslash
    escapes a quote inside them. Adjacent terms must all match. ``OR`` binds
    tighter than ``AND``, ``NOT`` negates the term after it and parentheses
    group.
    """
    tokens = _lex(query)
    if not tokens:
        raise QueryError("Empty expression string")
    return _QueryParser(tokens).parse()


def build_condition(expression: Expression):
    """Turn a parsed query into a SQLAlchemy filter condition."""
    if isinstance(expression, Term):
        return SEARCH_FUNCTIONS[expression.name](expression.value)
    if isinstance(expression, Negated):
        return not_(build_condition(expression.term))
    conditions = [build_condition(term) for term in expression.terms]
    if isinstance(expression, AnyOf):
        return or_(*conditions)
    return and_(*conditions)


def search_messages(db_session: Session, query: str, limit: int = SEARCH_LIMIT) -> List[Message]:
    """Find messages matching a search query, newest first."""
    condition = build_condition(parse_search_query(query))
    return (
        db_session.query(Message)
        .filter(condition)
        .order_by(Message.timestamp.desc(), Message.offset.desc())
        .limit(limit)
        .all()
    )


class DatesCache:
    """The list of dates, cached until invalidated."""

    def __init__(self):
        self._dates: Optional[List[str]] = None
        self._lock = threading.Lock()

    def get(self, db_session: Session) -> List[str]:
        with self._lock:
            if self._dates is None:
                self._dates = list_dates(db_session)
            return list(self._dates)

    def invalidate(self):
        with self._lock:
            self._dates = None


class StoreBackend:
    """Backend for the view controller that reads the database directly."""

    def __init__(
        self,
        db_session: Session,
        dates_cache: Optional[DatesCache] = None,
        search_limit: int = SEARCH_LIMIT,
    ):
        self.db_session = db_session
        self.dates_cache = dates_cache or DatesCache()
        self.search_limit = search_limit

    async def fetch_dates(self) -> List[str]:
        try:
            return self.dates_cache.get(self.db_session)
        except SQLAlchemyError as e:
            raise BackendError("Database error") from e

    async def fetch_logs(self, date: Optional[str] = None) -> List[MessageRecord]:
        try:
            if date is None:
                messages = latest_logs(self.db_session)
            else:
                messages = logs_for_date(self.db_session, parse_date(date))
        except LookupError as e:
            raise BackendError(str(e)) from e
        except SQLAlchemyError as e:
            raise BackendError("Database error") from e
        return [message.to_record() for message in messages]

    async def search(self, query: str) -> List[MessageRecord]:
        try:
            messages = search_messages(self.db_session, query, self.search_limit)
        except QueryError as e:
            raise BackendError(str(e)) from e
        except SQLAlchemyError as e:
            raise BackendError("Database error") from e
        return [message.to_record() for message in messages]
