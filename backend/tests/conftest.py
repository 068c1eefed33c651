"""
Pytest fixtures for LabDesk backend tests.

Provides an in-memory database, two laboratories with default roles,
one user per role, dentists, products, worksheets driven to QC_APPROVED,
and a recording mail dispatcher.
"""

import pytest
from labdesk import create_app
from labdesk.extensions import db
from labdesk.models import Laboratory, Dentist, Product, BankAccount
from labdesk.services.auth_service import create_default_roles, create_user, assign_role
from labdesk.services import permission_service, session_service, worksheet_service, notification_service
from labdesk.services.notification_service import DispatchResult


PASSWORD = "Password123!"


class RecordingDispatcher:
    """Mail dispatcher that keeps every message instead of delivering it."""

    def __init__(self):
        self.sent = []
        self.fail_with = None

    def send(self, email):
        if self.fail_with:
            return DispatchResult(success=False, error=self.fail_with)
        self.sent.append(email)
        return DispatchResult(success=True, message_id=f"<test-{len(self.sent)}@labdesk.test>")


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'BCRYPT_ROUNDS': 4,
        'MAIL_BACKEND': 'log',
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
def mailer(app):
    """Swap the configured dispatcher for a recording one."""
    original = notification_service.get_dispatcher()
    recorder = RecordingDispatcher()
    notification_service.set_dispatcher(app, recorder)
    yield recorder
    notification_service.set_dispatcher(app, original)


def _make_lab(db_session, name, code):
    lab = Laboratory(name=name, code=code, is_active=True)
    db_session.add(lab)
    db_session.commit()
    create_default_roles(lab.id)
    permission_service.initialize_permissions()
    permission_service.assign_default_role_permissions(lab.id)
    return lab


@pytest.fixture(scope='function')
def lab_a(db_session):
    """Laboratory A (first tenant)."""
    return _make_lab(db_session, "Lab A - Zubni Studio", "LABA")


@pytest.fixture(scope='function')
def lab_b(db_session):
    """Laboratory B (second tenant)."""
    return _make_lab(db_session, "Lab B - Dental Works", "LABB")


def _make_user(lab, role_name, email=None):
    user = create_user(
        email=email or f"{role_name}@{lab.code.lower()}.test",
        name=role_name.replace("_", " ").title(),
        password=PASSWORD,
        lab_id=lab.id,
    )
    assign_role(user.id, role_name)
    return user


@pytest.fixture(scope='function')
def admin_a(lab_a):
    return _make_user(lab_a, "admin")


@pytest.fixture(scope='function')
def technician_a(lab_a):
    return _make_user(lab_a, "technician")


@pytest.fixture(scope='function')
def qc_a(lab_a):
    return _make_user(lab_a, "qc_inspector")


@pytest.fixture(scope='function')
def invoicing_a(lab_a):
    return _make_user(lab_a, "invoicing")


@pytest.fixture(scope='function')
def staff_a(lab_a):
    return _make_user(lab_a, "staff")


@pytest.fixture(scope='function')
def admin_b(lab_b):
    return _make_user(lab_b, "admin")


def auth_headers(user) -> dict:
    """Helper to create Authorization headers for a fresh session."""
    _, token = session_service.create_session(user_id=user.id)
    return {'Authorization': f'Bearer {token}'}


@pytest.fixture(scope='function')
def admin_headers(admin_a):
    return auth_headers(admin_a)


@pytest.fixture(scope='function')
def technician_headers(technician_a):
    return auth_headers(technician_a)


@pytest.fixture(scope='function')
def staff_headers(staff_a):
    return auth_headers(staff_a)


@pytest.fixture(scope='function')
def admin_b_headers(admin_b):
    return auth_headers(admin_b)


def make_dentist(db_session, lab, **overrides):
    fields = {
        "clinic_name": "Smile Clinic",
        "dentist_name": "Dr. Ana Horvat",
        "email": "ana@smile.test",
        "payment_terms_days": 30,
    }
    fields.update(overrides)
    dentist = Dentist(lab_id=lab.id, **fields)
    db_session.add(dentist)
    db_session.commit()
    return dentist


def make_product(db_session, lab, code, price_cents, **overrides):
    product = Product(
        lab_id=lab.id,
        code=code,
        name=overrides.pop("name", f"Product {code}"),
        category=overrides.pop("category", "FIXED_PROSTHETICS"),
        price_cents=price_cents,
        **overrides,
    )
    db_session.add(product)
    db_session.commit()
    return product


@pytest.fixture(scope='function')
def dentist_a(db_session, lab_a):
    return make_dentist(db_session, lab_a)


@pytest.fixture(scope='function')
def other_dentist_a(db_session, lab_a):
    return make_dentist(
        db_session, lab_a, clinic_name="North Clinic", dentist_name="Dr. Ivo Kral", email="ivo@north.test"
    )


@pytest.fixture(scope='function')
def dentist_b(db_session, lab_b):
    return make_dentist(db_session, lab_b, clinic_name="Beta Clinic", email="beta@clinic.test")


@pytest.fixture(scope='function')
def crown(db_session, lab_a):
    return make_product(db_session, lab_a, "CRN-01", 5000, name="Zirconia crown")


@pytest.fixture(scope='function')
def bridge(db_session, lab_a):
    return make_product(db_session, lab_a, "BRG-01", 3000, name="Bridge unit")


def make_worksheet(lab, dentist, actor, products=(), status="DRAFT", patient_name="Patient"):
    """Create a worksheet and walk it along the state machine to `status`."""
    ws = worksheet_service.create_worksheet(
        lab_id=lab.id,
        dentist_id=dentist.id,
        patient_name=patient_name,
        created_by_user_id=actor.id,
    )
    for product, quantity in products:
        worksheet_service.add_worksheet_product(
            worksheet_id=ws.id, lab_id=lab.id, product_id=product.id, quantity=quantity, actor_user_id=actor.id
        )

    path = {
        "DRAFT": [],
        "IN_PRODUCTION": ["IN_PRODUCTION"],
        "QC_PENDING": ["IN_PRODUCTION", "QC_PENDING"],
        "QC_APPROVED": ["IN_PRODUCTION", "QC_PENDING", "QC_APPROVED"],
        "QC_REJECTED": ["IN_PRODUCTION", "QC_PENDING", "QC_REJECTED"],
        "CANCELLED": ["CANCELLED"],
    }[status]
    for target in path:
        worksheet_service.transition_worksheet(
            worksheet_id=ws.id, lab_id=lab.id, to_status=target, actor_user_id=actor.id
        )
    return ws


@pytest.fixture(scope='function')
def approved_worksheets(lab_a, dentist_a, technician_a, crown, bridge):
    """Two QC_APPROVED worksheets of dentist_a: 5000 and 3000 cents."""
    ws1 = make_worksheet(lab_a, dentist_a, technician_a, [(crown, 1)], "QC_APPROVED", "Marko")
    ws2 = make_worksheet(lab_a, dentist_a, technician_a, [(bridge, 1)], "QC_APPROVED", "Iva")
    return ws1, ws2


@pytest.fixture(scope='function')
def bank_account_a(db_session, lab_a):
    account = BankAccount(
        lab_id=lab_a.id,
        bank_name="Zagrebacka banka",
        iban="HR1210010051863000160",
        swift_bic="ZABAHR2X",
        is_primary=True,
        display_order=0,
    )
    db_session.add(account)
    db_session.commit()
    return account
