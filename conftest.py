from datetime import date, datetime, timezone

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from enums import RecurrenceEnum
from models import Base
from schemas import RecurrenceDescriptor, TemplateCreate
from services.memory_task_store import InMemoryTaskStore
from services.sql_task_store import SqlAlchemyTaskStore


@pytest.fixture
def engine(tmp_path):
    engine = create_engine(
        f"sqlite:///{tmp_path / 'test.db'}", connect_args={"check_same_thread": False}
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def sql_store(db):
    return SqlAlchemyTaskStore(db)


@pytest.fixture
def memory_store():
    return InMemoryTaskStore()


@pytest.fixture(params=["memory", "sql"])
def store(request):
    return request.getfixturevalue(f"{request.param}_store")


@pytest.fixture
def make_template():
    """Factory adding an active template to a store. Created on 2000-01-01 unless told otherwise."""
    def _make(
        store,
        next_due_date: date,
        pattern: RecurrenceEnum = RecurrenceEnum.DAILY,
        interval: int = 1,
        end_date: date = None,
        title: str = "Water the plants",
        created_at: datetime = datetime(2000, 1, 1, tzinfo=timezone.utc),
        **fields,
    ):
        template = TemplateCreate(
            title=title,
            next_due_date=next_due_date,
            recurrence=RecurrenceDescriptor(pattern=pattern, interval=interval, end_date=end_date),
            **fields,
        )
        return store.add_template(template, created_at=created_at)
    return _make
