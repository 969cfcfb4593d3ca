import logging
import os
from datetime import datetime

import pytest
from dotenv import find_dotenv, load_dotenv

# Logging setup
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

# Load environment variables before the settings object is built
env_file = find_dotenv(f".env{os.getenv('ENV', '')}")
logger.info("Fetching env_file %s", env_file)
load_dotenv(env_file)

from fastapi.testclient import TestClient  # noqa: E402
from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from sealdesk.core.db import get_db, init_db  # noqa: E402
from sealdesk.core.redis import InMemoryTTLStore, get_ttl_store  # noqa: E402
from sealdesk.identity.services import IdentityCeremony  # noqa: E402
from sealdesk.integrations.registry import IntegrationRegistry  # noqa: E402
from sealdesk.main import app  # noqa: E402
from sealdesk.utils.notifications import get_notification_dispatcher  # noqa: E402
from sealdesk.utils.storage import LocalDocumentStorage, get_document_storage  # noqa: E402
from sealdesk.workflow.services import EnvelopeService  # noqa: E402
from test.config import TEST_DATABASE_URL, TEST_START_TIME  # noqa: E402
from test.utils import FrozenClock, RecordingIntegration, RecordingNotifier  # noqa: E402


# Database Fixtures
@pytest.fixture
def engine():
    """
    Fresh in-memory database per test; one shared connection so every
    session sees the same schema.
    """
    test_engine = create_engine(
        TEST_DATABASE_URL, connect_args={"check_same_thread": False}, poolclass=StaticPool,
    )
    init_db(bind=test_engine)
    yield test_engine
    test_engine.dispose()


@pytest.fixture
def db_session(engine):
    TestSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    db = TestSessionLocal()
    try:
        yield db
    finally:
        db.close()


# Collaborator Fixtures
@pytest.fixture
def clock():
    return FrozenClock(datetime.fromisoformat(TEST_START_TIME))


@pytest.fixture
def storage(tmp_path):
    return LocalDocumentStorage(str(tmp_path / "storage"))


@pytest.fixture
def ttl_store():
    return InMemoryTTLStore()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def recorder():
    return RecordingIntegration()


@pytest.fixture
def registry(recorder):
    integrations = IntegrationRegistry()
    integrations.add(recorder)
    return integrations


@pytest.fixture
def service(db_session, storage, notifier, registry, clock):
    return EnvelopeService(db_session, storage, notifier, integrations=registry, clock=clock)


@pytest.fixture
def ceremony(db_session, ttl_store, notifier, clock):
    return IdentityCeremony(db_session, ttl_store, notifier, clock=clock)


@pytest.fixture
def client(db_session, storage, notifier, ttl_store):
    """Fixture for setting up TestClient with overridden dependencies."""
    def override_get_db():
        yield db_session
        db_session.commit()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_document_storage] = lambda: storage
    app.dependency_overrides[get_notification_dispatcher] = lambda: notifier
    app.dependency_overrides[get_ttl_store] = lambda: ttl_store

    test_client = TestClient(app)
    yield test_client

    app.dependency_overrides.clear()
