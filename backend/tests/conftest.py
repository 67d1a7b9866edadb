from types import SimpleNamespace

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import NullPool

from factories import RecordingQueue, make_engine, make_session, seed_organization


@pytest.fixture
def session():
    db = make_session()
    yield db
    db.close()


@pytest.fixture
def org(session):
    return seed_organization(session)


@pytest.fixture
def queue():
    return RecordingQueue()


@pytest.fixture
def api(tmp_path):
    """The FastAPI app over a SQLite file shared by a sync seeding session and the async API session."""
    from helpdesk.api.messaging import get_job_queue
    from helpdesk.database import get_db
    from helpdesk.main import app

    path = tmp_path / "api.db"
    engine = make_engine(f"sqlite:///{path}")
    db = sessionmaker(bind=engine)()
    async_session = async_sessionmaker(
        create_async_engine(f"sqlite+aiosqlite:///{path}", poolclass=NullPool), expire_on_commit=False,
    )

    async def get_test_db():
        async with async_session() as session:
            yield session

    job_queue = RecordingQueue()
    app.dependency_overrides[get_db] = get_test_db
    app.dependency_overrides[get_job_queue] = lambda: job_queue
    try:
        with TestClient(app) as client:
            yield SimpleNamespace(client=client, session=db, queue=job_queue, org=seed_organization(db), app=app)
    finally:
        app.dependency_overrides.clear()
        db.close()
        engine.dispose()
