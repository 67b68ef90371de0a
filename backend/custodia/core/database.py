import os

from sqlmodel import SQLModel, create_engine, Session
from sqlalchemy import DateTime
from sqlalchemy.engine import make_url
from sqlalchemy.types import TypeDecorator
from .clock import as_utc
from .settings import settings

# check_same_thread=False is needed only for SQLite
connect_args = {"check_same_thread": False}

engine = create_engine(settings.DATABASE_URL, connect_args=connect_args)


class UTCDateTime(TypeDecorator):
    """Stores timezone-aware UTC; SQLite hands values back naive, so they are re-tagged."""
    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        return as_utc(value)

    def process_result_value(self, value, dialect):
        return as_utc(value)


def create_db_and_tables():
    database = make_url(settings.DATABASE_URL).database
    if database and database != ":memory:":
        os.makedirs(os.path.dirname(os.path.abspath(database)), exist_ok=True)
    SQLModel.metadata.create_all(engine)

def get_session():
    with Session(engine) as session:
        yield session
