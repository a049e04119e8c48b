"""
Shared pytest fixtures for the rewards ledger tests.

Each test gets a fresh app on TestingConfig with its own in-memory SQLite
database, and runs inside that app's context.
"""
import pytest

from app import create_app
from app.extensions import db


# Catalog entries used alongside the default storefront catalog
TEST_REWARDS = [
    {
        'id': 'voucher-150',
        'title': 'S$150 Voucher',
        'description': 'Test voucher',
        'points': 15000,
        'type': 'voucher',
        'value': 150,
        'validityDays': 14,
    },
    {
        'id': 'swag-cap',
        'title': 'Limited Cap',
        'description': 'Only one left',
        'points': 1000,
        'type': 'swag',
        'stock': 1,
    },
]


@pytest.fixture
def app():
    """Create application for testing."""
    app = create_app('testing')

    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture
def runner(app):
    """Create CLI test runner."""
    return app.test_cli_runner()


@pytest.fixture
def auth_headers():
    """Identity headers forwarded by the gateway."""
    return {'X-User-Id': 'user-api'}


@pytest.fixture
def role_headers(auth_headers):
    """Identity headers for a staff role acting on the same account."""
    def _headers(role):
        return {**auth_headers, 'X-User-Role': role}
    return _headers


@pytest.fixture
def catalog(app):
    """Default storefront catalog plus test rewards."""
    from app.services import rewards_catalog

    rewards_catalog.seed_default_catalog()
    rewards_catalog.load_catalog(TEST_REWARDS)
    return {item.id: item for item in rewards_catalog.list_rewards()}


@pytest.fixture
def rewards(app):
    """Rewards service for a fresh individual account."""
    from app.services import RewardsService
    return RewardsService('user-1')


@pytest.fixture
def silver_rewards(app, catalog):
    """Account carried over from the storefront: 125000 pts, Silver."""
    from app.services import RewardsService

    service = RewardsService('user-silver')
    service.import_legacy_balance(125000, lifetime_points=250000, yearly_spend=125000)
    return service
