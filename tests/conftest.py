import os
import sys
import dataclasses
from datetime import date, timedelta
import pytest

os.environ.setdefault('APP_ENV', 'testing')
os.environ['CELERY_TASK_ALWAYS_EAGER'] = '1'

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))
import extensions
from models import db
from app.errors import UpstreamError
from app.services.payments import PaymentGateway, PaymentIntent
from app.utils import create_access_token
from app.version import API_PREFIX


class FakeGateway(PaymentGateway):
    """In-memory stand-in for Stripe. Webhook signatures are still verified for real."""

    def __init__(self):
        super().__init__(secret_key='sk_test', webhook_secret='whsec_test')
        self.intents = {}
        self.refunds = []
        self.fail_create = False
        self.fail_refund = False

    def create_intent(self, amount, *, metadata=None, description=''):
        if self.fail_create:
            raise UpstreamError('Payment provider unavailable')
        n = len(self.intents) + 1
        intent = PaymentIntent(f'pi_test_{n}', f'pi_test_{n}_secret', 'requires_payment_method', amount, dict(metadata or {}))
        self.intents[intent.id] = intent
        return intent

    def succeed(self, intent_id):
        self.intents[intent_id] = dataclasses.replace(self.intents[intent_id], status='succeeded')

    def retrieve_intent(self, intent_id):
        if intent_id not in self.intents:
            raise UpstreamError('No such payment intent')
        return self.intents[intent_id]

    def refund(self, intent_id, amount=None):
        if self.fail_refund:
            raise UpstreamError('Your card was declined')
        self.refunds.append((intent_id, amount))
        return f're_test_{len(self.refunds)}'


class FakeSms:
    def __init__(self):
        self.sent = []
        self.fail = False

    def send(self, to, body):
        if self.fail:
            raise UpstreamError('SMS failed: unreachable')
        self.sent.append((to, body))
        return f'SM{len(self.sent)}'


@pytest.fixture(scope='session')
def app_instance():
    from app import create_app
    app = create_app()
    app.config.update(TESTING=True)
    return app


@pytest.fixture(scope='function')
def app(app_instance):
    with app_instance.app_context():
        db.drop_all()
        db.create_all()
        extensions.limiter.reset()
        app_instance.extensions['payment_gateway'] = FakeGateway()
        app_instance.extensions['sms_sender'] = FakeSms()
        yield app_instance
        db.session.remove()
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    return app.test_client()


@pytest.fixture
def gateway(app):
    return app.extensions['payment_gateway']


@pytest.fixture
def sms(app):
    return app.extensions['sms_sender']


@pytest.fixture
def admin_headers(app):
    return {'Authorization': f"Bearer {create_access_token('ops@example.com', 'admin')}"}


@pytest.fixture
def driver_headers(app):
    return {'Authorization': f"Bearer {create_access_token('driver@example.com', 'driver')}"}


@pytest.fixture
def catalog(client):
    """Seattle at 10% tax with 3 carry-ons, 2 mediums and 2 larges."""
    r = client.post('/__seed/catalog', json={
        'city': {'name': 'Seattle', 'slug': 'seattle', 'tax_rate': '0.1'},
        'units': {'carryon': 3, 'medium': 2, 'large': 2},
    })
    assert r.status_code == 200
    return r.get_json()['data']


@pytest.fixture
def checkout_body(catalog):
    """Build a checkout payload; delivery is ``days_ahead`` from today for ``nights`` nights."""

    def build(days_ahead=10, nights=4, items=None, **overrides):
        start = date.today() + timedelta(days=days_ahead)
        body = {
            'city_id': catalog['city_id'],
            'delivery_date': start.isoformat(),
            'return_date': (start + timedelta(days=nights)).isoformat(),
            'items': items or [{'product_id': catalog['products']['carryon'], 'quantity': 1}],
            'customer': {'email': 'pat@example.com', 'name': 'Pat Traveler', 'phone': '206-555-0100'},
            'delivery_address': '1 Pike St, Seattle, WA 98101',
            'delivery_window': '9am-12pm',
            'return_address': '1 Pike St, Seattle, WA 98101',
            'return_window': '5pm-8pm',
        }
        body.update(overrides)
        return body

    return build


@pytest.fixture
def place_order(client, checkout_body):
    """Check out through the API and return the response data."""

    def place(**kwargs):
        r = client.post(f'{API_PREFIX}/checkout', json=checkout_body(**kwargs))
        assert r.status_code == 201, r.get_json()
        return r.get_json()['data']

    return place


@pytest.fixture
def confirm_order(gateway):
    """Mark an order's payment captured and confirm it as the webhook would."""
    from app.services.orders import handle_payment_event, get_order

    def confirm(order_id):
        order = get_order(order_id)
        gateway.succeed(order.payment_intent_id)
        event = {'type': 'payment_intent.succeeded', 'data': {'object': {'id': order.payment_intent_id}}}
        assert handle_payment_event(event) == 'confirmed'
        return get_order(order_id)

    return confirm
