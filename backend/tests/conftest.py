import os, sys, pytest
# Ensure backend directory is on path so 'storefront' can be imported
ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), '..'))
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)
from storefront import create_app, get_db
from storefront.models.authz import Base
# Import all model modules to ensure tables are registered before create_all
import storefront.models.product  # noqa: F401
import storefront.models.order  # noqa: F401
import storefront.models.audit  # noqa: F401

TEST_DB_URL = 'sqlite+pysqlite:///:memory:'


@pytest.fixture(scope='session', autouse=True)
def app_instance():
    os.environ['DATABASE_URL'] = TEST_DB_URL
    app = create_app({
        'DATABASE_URL': TEST_DB_URL,
        'ORDER_AUTOMATION_ENABLED': False,
        'BREAK_GLASS_EMAILS': [],
    })
    # After app and blueprints are registered, ensure all tables exist
    with app.app_context():
        engine = get_db().get_bind()
        Base.metadata.create_all(engine)
    yield app


@pytest.fixture()
def client(app_instance):
    return app_instance.test_client()


@pytest.fixture()
def app_context(app_instance):
    with app_instance.app_context():
        yield app_instance


@pytest.fixture(autouse=True)
def clean_session(app_instance):
    # shared session and permission cache are reset per test
    get_db().rollback()
    app_instance.extensions['permission_cache'].invalidate()
    yield
    get_db().rollback()
