"""Database models for stored chat messages."""

from sqlalchemy import Column, DateTime, Integer, String, Text, create_engine
from sqlalchemy.orm import declarative_base, sessionmaker

from .records import MessageRecord

Base = declarative_base()


class Message(Base):
    """Model for a single logged chat message."""

    __tablename__ = "messages"

    id = Column(Integer, primary_key=True, autoincrement=True)
    timestamp = Column(DateTime, nullable=False, index=True)  # wall-clock time of the source log
    offset = Column(Integer, nullable=False)  # line number within the day's log
    channel = Column(String(255), nullable=False)
    author = Column(String(255), nullable=False)
    body = Column(Text, nullable=False)

    def to_record(self) -> MessageRecord:
        return MessageRecord(
            timestamp=self.timestamp.isoformat(),
            author=self.author,
            body=self.body,
            anchor=self.offset,
        )

    def __repr__(self):
        return f"<Message(timestamp='{self.timestamp}', offset={self.offset}, author='{self.author}')>"


def get_engine(database_url):
    """Create a database engine."""
    return create_engine(database_url)


def get_session(engine):
    """Create a database session."""
    Session = sessionmaker(bind=engine)
    return Session()


def init_db(database_url):
    """Initialize the database with all tables."""
    engine = get_engine(database_url)
    Base.metadata.create_all(engine)
    return engine
