import hashlib
import hmac
import json
import time
from datetime import datetime, timedelta

from app.services.orders import get_order, cancel_order
from app.services.sweeps import cancel_stale_orders
from app.version import API_PREFIX
from models import Reservation

URL = f'{API_PREFIX}/webhooks/payments'


def _signed(event, secret='whsec_test'):
    payload = json.dumps(event)
    ts = int(time.time())
    sig = hmac.new(secret.encode(), f'{ts}.{payload}'.encode(), hashlib.sha256).hexdigest()
    return payload, {'Stripe-Signature': f't={ts},v1={sig}'}


def _post(client, event, secret='whsec_test'):
    payload, headers = _signed(event, secret)
    return client.post(URL, data=payload, headers=headers, content_type='application/json')


def _event(kind, intent_id):
    return {'id': 'evt_1', 'type': kind, 'data': {'object': {'id': intent_id, 'object': 'payment_intent'}}}


def test_payment_success_confirms_order(client, place_order, sms):
    order = get_order(place_order()['order_id'])
    r = _post(client, _event('payment_intent.succeeded', order.payment_intent_id))
    assert r.status_code == 200
    assert r.get_json()['data'] == {'received': True, 'outcome': 'confirmed'}
    assert get_order(order.id).status == 'confirmed'
    assert sms.sent[-1][0] == '206-555-0100'
    assert 'is confirmed' in sms.sent[-1][1]


def test_replayed_event_is_idempotent(client, place_order, sms):
    order = get_order(place_order()['order_id'])
    _post(client, _event('payment_intent.succeeded', order.payment_intent_id))
    r = _post(client, _event('payment_intent.succeeded', order.payment_intent_id))
    assert r.get_json()['data']['outcome'] == 'already_processed'
    assert len(sms.sent) == 1


def test_payment_failure_cancels_and_releases(client, place_order):
    order = get_order(place_order()['order_id'])
    r = _post(client, _event('payment_intent.payment_failed', order.payment_intent_id))
    assert r.get_json()['data']['outcome'] == 'cancelled'
    order = get_order(order.id)
    assert order.status == 'cancelled'
    assert 'Payment failed' in order.admin_notes
    assert Reservation.query.count() == 0


def test_refunded_charge_cancels_order(client, place_order):
    order = get_order(place_order()['order_id'])
    event = {'id': 'evt_2', 'type': 'charge.refunded',
             'data': {'object': {'id': 'ch_1', 'payment_intent': order.payment_intent_id}}}
    r = _post(client, event)
    assert r.get_json()['data']['outcome'] == 'cancelled'


def test_unknown_intent_and_event_type_ignored(client, place_order):
    place_order()
    assert _post(client, _event('payment_intent.succeeded', 'pi_other')).get_json()['data']['outcome'] == 'ignored'
    assert _post(client, _event('customer.created', 'cus_1')).get_json()['data']['outcome'] == 'ignored'


def test_bad_signature_rejected(client, place_order):
    order = get_order(place_order()['order_id'])
    r = _post(client, _event('payment_intent.succeeded', order.payment_intent_id), secret='whsec_wrong')
    assert r.status_code == 400
    assert get_order(order.id).status == 'pending'


def test_missing_signature_rejected(client):
    r = client.post(URL, data='{}', content_type='application/json')
    assert r.status_code == 400
    assert r.get_json()['message'] == 'Missing webhook signature'


def test_payment_after_expiry_is_refunded_once(client, place_order, gateway):
    order = get_order(place_order()['order_id'])
    assert cancel_stale_orders(datetime.utcnow() + timedelta(hours=49)) == 1
    gateway.succeed(order.payment_intent_id)

    r = _post(client, _event('payment_intent.succeeded', order.payment_intent_id))
    assert r.get_json()['data']['outcome'] == 'refunded'
    assert gateway.refunds == [(order.payment_intent_id, None)]
    order = get_order(order.id)
    assert order.status == 'cancelled'
    assert 'succeeded after cancellation. Refund: refunded' in order.admin_notes

    r = _post(client, _event('payment_intent.succeeded', order.payment_intent_id))
    assert r.get_json()['data']['outcome'] == 'already_processed'
    assert len(gateway.refunds) == 1


def test_late_payment_refund_failure_is_noted_and_retried(client, place_order, gateway):
    order = get_order(place_order()['order_id'])
    cancel_stale_orders(datetime.utcnow() + timedelta(hours=49))
    gateway.succeed(order.payment_intent_id)
    gateway.fail_refund = True

    r = _post(client, _event('payment_intent.succeeded', order.payment_intent_id))
    assert r.get_json()['data']['outcome'] == 'refund_failed'
    assert 'Refund: refund_failed' in get_order(order.id).admin_notes

    gateway.fail_refund = False
    r = _post(client, _event('payment_intent.succeeded', order.payment_intent_id))
    assert r.get_json()['data']['outcome'] == 'refunded'
    assert gateway.refunds == [(order.payment_intent_id, None)]


def test_replay_after_customer_cancellation_does_not_refund_twice(client, place_order, confirm_order, gateway):
    order = confirm_order(place_order()['order_id'])
    cancel_order(order.id, 'pat@example.com', gateway)
    assert gateway.refunds == [(order.payment_intent_id, None)]

    r = _post(client, _event('payment_intent.succeeded', order.payment_intent_id))
    assert r.get_json()['data']['outcome'] == 'already_processed'
    assert len(gateway.refunds) == 1
