from datetime import datetime, timedelta

import pytest

from app.errors import ValidationError, ConflictError
from app.services import referrals
from app.services.orders import advance_status, get_order, order_history, handle_payment_event
from app.services.sweeps import send_abandoned_notices, cancel_stale_orders, send_reminders, close_shipped_returns
from app.version import API_PREFIX
from models import db, Customer, PromoCode, Reservation

SHIP_BACK = {'address': '9 Elm St', 'city': 'Boston', 'state': 'MA', 'zip': '02108'}


def test_status_walk_sends_texts_and_logs(app, place_order, confirm_order, sms):
    order = confirm_order(place_order()['order_id'])
    for status in ('out_for_delivery', 'delivered', 'out_for_pickup', 'returned'):
        advance_status(order.id, status, 'driver@example.com')
    assert get_order(order.id).status == 'returned'
    assert [log.status for log in order_history(order.id)] == [
        'pending', 'confirmed', 'out_for_delivery', 'delivered', 'out_for_pickup', 'returned',
    ]
    bodies = [body for _, body in sms.sent]
    assert any('on its way' in b for b in bodies)
    assert any('Pickup is scheduled' in b for b in bodies)


def test_unknown_and_terminal_statuses_rejected(app, place_order, gateway):
    order_id = place_order()['order_id']
    with pytest.raises(ValidationError):
        advance_status(order_id, 'lost', 'ops')
    with pytest.raises(ValidationError):
        advance_status(order_id, 'cancelled', 'ops')
    advance_status(order_id, 'returned', 'ops')
    with pytest.raises(ConflictError):
        advance_status(order_id, 'delivered', 'ops')


def test_ship_back_order_skips_pickup(app, place_order):
    order_id = place_order(return_method='ship', ship_back=SHIP_BACK)['order_id']
    with pytest.raises(ValidationError):
        advance_status(order_id, 'out_for_pickup', 'ops')


def test_referrer_credited_when_referred_order_returns(app, place_order):
    referrer = referrals.get_or_create_customer('friend@example.com', 'Friend')
    db.session.commit()
    order_id = place_order(referral_code=referrer.referral_code)['order_id']
    advance_status(order_id, 'returned', 'ops')
    assert Customer.query.filter_by(email='friend@example.com').one().referral_credit == 1000


def test_driver_can_advance_and_view_route(client, place_order, confirm_order, driver_headers):
    order = confirm_order(place_order(days_ahead=3)['order_id'])
    r = client.get(f'{API_PREFIX}/driver/route', headers=driver_headers, query_string={
        'city_id': order.delivery_city_id, 'day': order.delivery_date.isoformat(),
    })
    assert r.status_code == 200
    stops = r.get_json()['data']['stops']
    assert [(s['order_id'], s['kind']) for s in stops] == [(order.id, 'delivery')]

    r = client.post(f'{API_PREFIX}/driver/orders/{order.id}/status', headers=driver_headers,
                    json={'status': 'out_for_delivery'})
    assert r.status_code == 200
    assert r.get_json()['data'] == {'order_id': order.id, 'status': 'out_for_delivery'}


def test_driver_cannot_use_admin_endpoints(client, driver_headers, catalog):
    r = client.get(f'{API_PREFIX}/admin/orders', headers=driver_headers)
    assert r.status_code == 403


def test_driver_endpoints_need_token(client, catalog):
    r = client.post(f'{API_PREFIX}/driver/orders/1/status', json={'status': 'delivered'})
    assert r.status_code == 401


def test_abandoned_checkout_gets_one_recovery_offer(app, place_order, sms):
    order_id = place_order()['order_id']
    now = datetime.utcnow() + timedelta(minutes=90)
    assert send_abandoned_notices(now) == 1
    promo = PromoCode.query.filter_by(code=f'COMEBACK10-{order_id}').one()
    assert (promo.discount_type, promo.discount_value, promo.usage_limit) == ('percent', 10, 1)
    assert promo.code in sms.sent[-1][1]
    assert send_abandoned_notices(now) == 0


def test_stale_pending_orders_expire(app, place_order, confirm_order):
    stale = place_order()['order_id']
    paid = confirm_order(place_order()['order_id']).id
    assert cancel_stale_orders(datetime.utcnow() + timedelta(hours=49)) == 1
    assert get_order(stale).status == 'cancelled'
    assert get_order(paid).status == 'confirmed'
    assert Reservation.query.filter_by(order_id=stale).count() == 0
    assert 'Payment not completed within 48 hours' in get_order(stale).admin_notes


def test_order_timestamps_are_utc(app, place_order):
    before = datetime.utcnow()
    order = get_order(place_order()['order_id'])
    assert before - timedelta(seconds=5) <= order.created_at <= datetime.utcnow() + timedelta(seconds=5)
    assert abs(order_history(order.id)[0].timestamp - order.created_at) < timedelta(seconds=5)
    assert cancel_stale_orders(datetime.utcnow() + timedelta(hours=47)) == 0
    assert get_order(order.id).status == 'pending'


def test_backdated_order_expires_now(client, place_order):
    order_id = place_order()['order_id']
    client.post(f'/__orders/{order_id}/age', json={'hours': 50})
    assert cancel_stale_orders() == 1


def test_reminders_for_tomorrow(app, place_order, confirm_order):
    order = confirm_order(place_order(days_ahead=5)['order_id'])
    counts = send_reminders(order.delivery_date - timedelta(days=1))
    assert counts == {'deliveries': 1, 'pickups': 0}

    advance_status(order.id, 'delivered', 'ops')
    counts = send_reminders(order.return_date - timedelta(days=1))
    assert counts == {'deliveries': 0, 'pickups': 1}


def test_ship_back_orders_close_after_return_date(app, place_order):
    order = get_order(place_order(return_method='ship', ship_back=SHIP_BACK)['order_id'])
    advance_status(order.id, 'delivered', 'ops')
    assert close_shipped_returns(order.return_date) == 0
    assert close_shipped_returns(order.return_date + timedelta(days=1)) == 1
    assert get_order(order.id).status == 'returned'


def test_inventory_cli(app, catalog):
    runner = app.test_cli_runner()
    result = runner.invoke(args=[
        'inventory-add', '--city', str(catalog['city_id']), '--product', str(catalog['products']['carryon']),
        '--quantity', '2',
    ])
    assert result.exit_code == 0
    assert 'CO-SEATTLE-004 .. CO-SEATTLE-005' in result.output

    result = runner.invoke(args=['inventory-add', '--city', '999', '--product', '1', '--quantity', '1'])
    assert result.exit_code != 0
    assert 'City not found' in result.output


def test_sweep_cli(app, place_order):
    place_order()
    result = app.test_cli_runner().invoke(args=['sweep-abandoned'])
    assert result.exit_code == 0
    assert 'Recovery offers sent: 0. Expired orders cancelled: 0.' in result.output


def test_sweep_leaves_paid_orders_for_the_webhook(app, place_order, gateway):
    order = get_order(place_order()['order_id'])
    gateway.succeed(order.payment_intent_id)
    assert cancel_stale_orders(datetime.utcnow() + timedelta(hours=49)) == 0
    assert get_order(order.id).status == 'pending'

    event = {'type': 'payment_intent.succeeded', 'data': {'object': {'id': order.payment_intent_id}}}
    assert handle_payment_event(event) == 'confirmed'
    assert Reservation.query.filter_by(order_id=order.id).count() == 1


def test_sweep_skips_orders_when_payment_status_unknown(app, place_order, gateway):
    order = get_order(place_order()['order_id'])
    gateway.intents.clear()
    assert cancel_stale_orders(datetime.utcnow() + timedelta(hours=49)) == 0
    assert get_order(order.id).status == 'pending'
