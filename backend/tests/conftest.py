"""
Pytest fixtures for TrashDrop backend tests.

Provides the app (in-memory SQLite for both the backend and the local store),
per-test table wiping, the sync service and batch factories.
"""

import uuid

import pytest
from trashdrop import create_app
from trashdrop.extensions import db
from trashdrop.models import Bag, Batch
from trashdrop.services.sync_service import get_sync_service


TEST_CONFIG = {
    'TESTING': True,
    'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
    'SQLALCHEMY_BINDS': {'local': 'sqlite:///:memory:'},
    'SQLALCHEMY_TRACK_MODIFICATIONS': False,
    'BACKEND_MODE': 'sql',
    'CHECK_BATCH_URL': '',
    'CONNECTIVITY_PROBE_URL': '',
    # Attempts run inline; SQLite memory DBs and worker threads do not mix
    'ACTIVATION_TIMEOUT_SECONDS': None,
    'ACTIVATION_MAX_RETRIES': 3,
    'BACKOFF_BASE_SECONDS': 0,
    'BACKOFF_MAX_SECONDS': 0,
    'SYNC_AUTOSTART': False,
    'START_ONLINE': True,
}


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app(TEST_CONFIG)

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """Create fresh database for each test."""
    with app.app_context():
        # Clear all data but keep schema (backend + local bind)
        for meta in db.metadatas.values():
            for table in reversed(meta.sorted_tables):
                db.session.execute(table.delete())
        db.session.commit()
        db.session.expunge_all()

        yield db.session

        # Cleanup after test
        db.session.rollback()


@pytest.fixture(scope='function')
def sync(app, db_session):
    """The app's BatchSyncService, back online with no drain history."""
    service = get_sync_service()
    service.set_online(True)
    service.last_report = None
    service.last_drain_at = None
    return service


@pytest.fixture(scope='function')
def make_batch(db_session):
    """Factory: make_batch(code, status='active', bag_count=0, owner_id=None, bags=0)."""
    def _make(code, *, status="active", bag_count=0, owner_id=None, bags=0):
        batch = Batch(
            id=str(uuid.uuid4()),
            batch_number=code,
            status=status,
            bag_count=bag_count,
            owner_id=owner_id,
        )
        db_session.add(batch)
        db_session.flush()
        for _ in range(bags):
            db_session.add(Bag(id=str(uuid.uuid4()), batch_id=batch.id))
        db_session.commit()
        return batch
    return _make

