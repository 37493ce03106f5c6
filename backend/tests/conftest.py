"""
Pytest fixtures for the Optica backend tests.

Provides an in-memory database, per-test table wipe, user/product/patient
fixtures, a discount factory and auth header helpers.
"""

from decimal import Decimal

import pytest
from optica import create_app
from optica.extensions import db
from optica.models import DiscountRequest, Patient, Product
from optica.models.discounts import STATUS_APPROVED, STATUS_PENDING
from optica.services.auth_service import create_user
from optica.services.discount_request_service import Actor
from optica.time_utils import utcnow

PASSWORD = "Password123!"


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'BCRYPT_ROUNDS': 4,
    })

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
        # Clear all data but keep schema
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        yield db.session

        # Cleanup after test
        db.session.rollback()


@pytest.fixture(scope='function')
def admin_user(db_session):
    return create_user("admin", "admin@optica.local", PASSWORD, "admin")


@pytest.fixture(scope='function')
def specialist_user(db_session):
    return create_user("ana", "ana@optica.local", PASSWORD, "specialist")


@pytest.fixture(scope='function')
def receptionist_user(db_session):
    return create_user("luis", "luis@optica.local", PASSWORD, "receptionist")


@pytest.fixture(scope='function')
def admin_actor(admin_user):
    return Actor.from_user(admin_user)


@pytest.fixture(scope='function')
def specialist_actor(specialist_user):
    return Actor.from_user(specialist_user)


@pytest.fixture(scope='function')
def receptionist_actor(receptionist_user):
    return Actor.from_user(receptionist_user)


@pytest.fixture(scope='function')
def product(db_session):
    """Frame priced at 199.99."""
    product = Product(sku="FRM-001", name="Titanium Frame", price=Decimal("199.99"))
    db_session.add(product)
    db_session.commit()
    return product


@pytest.fixture(scope='function')
def lens(db_session):
    """Lens priced at 100.00."""
    product = Product(sku="LNS-001", name="Progressive Lens", price=Decimal("100.00"))
    db_session.add(product)
    db_session.commit()
    return product


@pytest.fixture(scope='function')
def patient(db_session):
    patient = Patient(first_name="Maria", last_name="Lopez", identification="1001")
    db_session.add(patient)
    db_session.commit()
    return patient


@pytest.fixture(scope='function')
def other_patient(db_session):
    patient = Patient(first_name="Jorge", last_name="Ruiz", identification="1002")
    db_session.add(patient)
    db_session.commit()
    return patient


@pytest.fixture(scope='function')
def make_discount(db_session, admin_user):
    """
    Insert a DiscountRequest row directly (bypasses the lifecycle service).

    Defaults to an approved global discount decided now. Pass patient=...
    for a patient-scoped row, decided_at=... to control ordering, and
    expiry_date=... to create rows that are already expired.
    """
    def _make(product, pct, *, patient=None, status=STATUS_APPROVED,
              expiry_date=None, decided_at=None, requested_by=None):
        req = DiscountRequest(
            product_id=product.id,
            patient_id=patient.id if patient is not None else None,
            is_global=patient is None,
            discount_percentage=Decimal(str(pct)),
            expiry_date=expiry_date,
            status=status,
            requested_by=requested_by or admin_user.id,
        )
        if status != STATUS_PENDING:
            req.approved_by = admin_user.id
            req.decided_at = decided_at or utcnow()
        db_session.add(req)
        db_session.commit()
        return req

    return _make


def get_auth_token(client, username: str, password: str = PASSWORD) -> str:
    """Helper to get auth token for a user."""
    response = client.post('/api/auth/login', json={
        'username': username,
        'password': password
    })
    if response.status_code == 200:
        return response.json.get('token')
    return None


def auth_headers(token: str) -> dict:
    """Helper to create Authorization headers."""
    return {'Authorization': f'Bearer {token}'}


@pytest.fixture(scope='function')
def admin_headers(client, admin_user):
    return auth_headers(get_auth_token(client, "admin"))


@pytest.fixture(scope='function')
def specialist_headers(client, specialist_user):
    return auth_headers(get_auth_token(client, "ana"))


@pytest.fixture(scope='function')
def receptionist_headers(client, receptionist_user):
    return auth_headers(get_auth_token(client, "luis"))
