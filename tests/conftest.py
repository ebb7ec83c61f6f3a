import pytest

from app import create_app
from models import db


@pytest.fixture
def app(tmp_path):
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite://',
        'QR_FOLDER': str(tmp_path / 'qr_codes'),
        'BREVO_API_KEY': '',
        'STAFF_PIN': '4321'
    })
    with app.app_context():
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def staff_headers():
    return {'X-Staff-Pin': '4321'}


@pytest.fixture
def attendee():
    def make(**overrides):
        info = {
            'name': 'Ada Obi',
            'phone': '08030000000',
            'email': 'ada@example.com',
            'church': 'Grace Chapel',
            'zone': 'Akoka',
            'meal_choice': 'semo-egusi'
        }
        info.update(overrides)
        return info
    return make


@pytest.fixture
def sent_emails(monkeypatch):
    import mailer

    sent = []

    def fake_send(registration):
        sent.append(registration.id)
        return True

    monkeypatch.setattr(mailer, 'send_ticket_email', fake_send)
    return sent
