"""
Pytest fixtures for the ticketing backend.

Every test gets a fresh application on an in-memory SQLite database, with
Paystack and Brevo replaced by in-process fakes.
"""
import json
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from app import create_app
from errors import EmailDeliveryError, UpstreamFailure
from models import Event, User, db
from payments import compute_webhook_signature

SIGNING_SECRET = 'test-ticket-signing-secret-0123456789'
WEBHOOK_SECRET = 'sk_test_webhook_secret'
ADMIN_KEY = 'admin-test-key'


def today():
    return datetime.now(timezone.utc).date()


class FakePaystack:
    def __init__(self):
        self.initialized = []
        self.refunds = []
        self.fail = False

    def initialize_transaction(self, email, amount, currency, reference, callback_url, metadata):
        if self.fail:
            raise UpstreamFailure('Payment provider is unavailable')
        self.initialized.append({
            'email': email,
            'amount': amount,
            'currency': currency,
            'reference': reference,
            'callback_url': callback_url,
            'metadata': metadata,
        })
        return {
            'authorization_url': f'https://checkout.paystack.com/{reference}',
            'access_code': 'ac_test',
            'reference': reference,
        }

    def verify_transaction(self, reference):
        return {
            'status': 'success',
            'amount': 500000,
            'currency': 'NGN',
            'reference': reference,
            'paid_at': '2026-10-19T10:00:00.000Z',
            'channel': 'card',
            'metadata': {},
        }

    def refund(self, reference, amount=None):
        self.refunds.append({'reference': reference, 'amount': amount})
        return {'transaction': {'reference': reference}, 'status': 'pending'}


class FakeMailer:
    def __init__(self):
        self.sent = []
        self.fail = False

    def send(self, to_email, to_name, subject, html, text=None):
        if self.fail:
            raise EmailDeliveryError('Error sending email: 500')
        self.sent.append({'to': to_email, 'name': to_name, 'subject': subject, 'html': html, 'text': text})


def make_config(**overrides):
    config = {
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'TICKET_SIGNING_SECRET': SIGNING_SECRET,
        'PAYSTACK_SECRET_KEY': 'sk_test_secret',
        'PAYSTACK_WEBHOOK_SECRET': WEBHOOK_SECRET,
        'ADMIN_API_KEY': ADMIN_KEY,
        'NOTIFY_ASYNC': False,
        'FRONTEND_URL': 'https://danceschool.test',
    }
    config.update(overrides)
    return config


@pytest.fixture
def paystack():
    return FakePaystack()


@pytest.fixture
def mailer():
    return FakeMailer()


@pytest.fixture
def app(paystack, mailer):
    app = create_app(make_config(), paystack_client=paystack, mailer=mailer)
    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def services(app):
    return app.extensions['ticketing']


@pytest.fixture
def tickets(services):
    return services.tickets


@pytest.fixture
def payments(services):
    return services.payments


@pytest.fixture
def make_event(app):
    def _make(**overrides):
        fields = {
            'title': 'Salsa Social Night',
            'date': today() + timedelta(days=7),
            'time': '19:00',
            'venue': 'Studio A',
            'capacity': 50,
            'price': Decimal('5000.00'),
        }
        fields.update(overrides)
        event = Event(**fields)
        db.session.add(event)
        db.session.commit()
        return event
    return _make


@pytest.fixture
def event(make_event):
    return make_event()


@pytest.fixture
def user(app):
    user = User(name='Ada Dancer', email='ada@example.com')
    db.session.add(user)
    db.session.commit()
    return user


@pytest.fixture
def make_ticket(tickets, event):
    def _make(target=None, **buyer):
        fields = {
            'buyer_name': 'Ada Dancer',
            'buyer_email': 'ada@example.com',
            'buyer_phone': '08012345678',
        }
        fields.update(buyer)
        return tickets.create_ticket((target or event).id, **fields)
    return _make


@pytest.fixture
def admin_headers():
    return {'Authorization': f'Bearer {ADMIN_KEY}'}


def signed_webhook(client, payload, secret=WEBHOOK_SECRET):
    """POST a webhook body signed the way Paystack signs it."""
    body = json.dumps(payload).encode('utf-8')
    return client.post(
        '/webhook/paystack',
        data=body,
        headers={
            'x-paystack-signature': compute_webhook_signature(secret, body),
            'Content-Type': 'application/json',
        },
    )
