import os, sys, pytest
# Ensure the backend directory is on path so 'portal' and 'tests' can be imported
ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), '..'))
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool
from portal import create_app, get_db
from portal.models.authz import Base
# Import all model modules to ensure tables are registered before create_all
import portal.models.service_ticket  # noqa: F401
import portal.models.audit  # noqa: F401
from tests.fakes import RecordingAttachmentStore, RecordingNotifier

ADMIN_NOTIFY_EMAIL = 'ops@example.com'


@pytest.fixture(scope='session', autouse=True)
def app_instance():
    app = create_app({
        'DATABASE_URL': 'sqlite+pysqlite:///:memory:',
        'JWT_SECRET_KEY': 'test-secret-key-with-enough-length-0123',
        'ATTACHMENT_STORE': RecordingAttachmentStore(),
        'NOTIFIER': RecordingNotifier(),
        'ADMIN_NOTIFY_EMAIL': ADMIN_NOTIFY_EMAIL,
    })
    # After app and blueprints are registered, ensure all tables exist
    with app.app_context():
        engine = get_db().get_bind()
        Base.metadata.create_all(engine)
    yield app


@pytest.fixture(autouse=True)
def preset_matrices(app_instance):
    """Every test starts from the default matrices; tests may edit them freely."""
    from tests.test_utils_seed import seed_default_matrices
    with app_instance.app_context():
        get_db().rollback()
        seed_default_matrices()
    yield


@pytest.fixture()
def app_context(app_instance):
    with app_instance.app_context():
        yield app_instance


@pytest.fixture()
def client(app_instance):
    return app_instance.test_client()


@pytest.fixture()
def attachment_store(app_instance):
    store = app_instance.extensions['attachment_store']
    store.reset()
    return store


@pytest.fixture()
def notifier(app_instance):
    n = app_instance.extensions['notifier']
    n.reset()
    return n


@pytest.fixture()
def isolated_session():
    """Private in-memory database for service tests that depend on global counts."""
    engine = create_engine(
        'sqlite+pysqlite:///:memory:',
        future=True,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    session = sessionmaker(bind=engine, expire_on_commit=False, autoflush=False)()
    yield session
    session.close()
    engine.dispose()
