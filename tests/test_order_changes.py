from datetime import date, datetime, time, timedelta

import pytest

from app.errors import ValidationError, ConflictError, InsufficientInventoryError
from app.services.orders import update_address, quote_extension, apply_extension, get_order
from app.services.reservations import reservations_for
from app.version import API_PREFIX
from models import OrderPayment


def _midnight(day):
    return datetime.combine(day, time.min)


def test_delivery_address_change_before_cutoff(app, place_order):
    order = get_order(place_order()['order_id'])
    now = _midnight(order.delivery_date) - timedelta(hours=25)
    update_address(order.id, 'pat@example.com', {'delivery_address': '2 Pine St'}, now=now)
    order = get_order(order.id)
    assert order.delivery_address == '2 Pine St'
    assert 'Customer updated delivery_address' in order.admin_notes


def test_delivery_address_change_inside_cutoff_rejected(app, place_order):
    order = get_order(place_order()['order_id'])
    now = _midnight(order.delivery_date) - timedelta(hours=23)
    with pytest.raises(ConflictError):
        update_address(order.id, 'pat@example.com', {'delivery_address': '2 Pine St'}, now=now)


def test_return_change_uses_return_date_cutoff(app, place_order):
    order = get_order(place_order()['order_id'])
    now = _midnight(order.delivery_date) - timedelta(hours=1)
    update_address(order.id, 'pat@example.com', {'return_window': '6pm-9pm'}, now=now)
    assert get_order(order.id).return_window == '6pm-9pm'


def test_ship_back_orders_have_no_return_address(app, place_order):
    order_id = place_order(
        return_method='ship',
        ship_back={'address': '9 Elm St', 'city': 'Boston', 'state': 'MA', 'zip': '02108'},
    )['order_id']
    with pytest.raises(ValidationError):
        update_address(order_id, 'pat@example.com', {'return_address': '3 Oak St'})


def test_update_address_endpoint(client, place_order):
    order_id = place_order()['order_id']
    r = client.post(f'{API_PREFIX}/orders/update-address', json={
        'order_id': order_id, 'email': 'pat@example.com', 'delivery_window': '12pm-3pm',
    })
    assert r.status_code == 200
    assert r.get_json()['data']['delivery_window'] == '12pm-3pm'

    empty = client.post(f'{API_PREFIX}/orders/update-address', json={'order_id': order_id, 'email': 'pat@example.com'})
    assert empty.status_code == 400


def test_update_address_endpoint_inside_cutoff(client, place_order):
    order_id = place_order(days_ahead=0)['order_id']
    r = client.post(f'{API_PREFIX}/orders/update-address', json={
        'order_id': order_id, 'email': 'pat@example.com', 'delivery_address': '2 Pine St',
    })
    assert r.status_code == 409
    assert get_order(order_id).delivery_address == '1 Pike St, Seattle, WA 98101'


def test_extension_quote(app, place_order):
    order = get_order(place_order()['order_id'])
    q = quote_extension(order, order.return_date + timedelta(days=2))
    assert q.day_delta == 2
    assert q.rental_difference == 2000
    assert q.tax_difference == 200
    assert q.amount_due == 2200
    assert q.new_total == 8799


def test_extension_quote_endpoint(client, place_order):
    data = place_order()
    order = get_order(data['order_id'])
    r = client.get(f'{API_PREFIX}/orders/extend-dates', query_string={
        'order_id': order.id,
        'email': 'pat@example.com',
        'new_return_date': (order.return_date + timedelta(days=1)).isoformat(),
    })
    assert r.status_code == 200
    assert r.get_json()['data']['amount_due'] == 1100


def test_extension_needs_payment_first(client, place_order):
    order = get_order(place_order()['order_id'])
    new_return = order.return_date + timedelta(days=2)
    r = client.post(f'{API_PREFIX}/orders/extend-dates', json={
        'order_id': order.id, 'email': 'pat@example.com', 'new_return_date': new_return.isoformat(),
    })
    assert r.status_code == 202
    data = r.get_json()['data']
    assert data['status'] == 'requires_payment'
    assert data['client_secret'] == 'pi_test_2_secret'
    assert get_order(order.id).return_date == order.return_date


def test_extension_applied_after_payment(app, place_order, gateway):
    order = get_order(place_order()['order_id'])
    new_return = order.return_date + timedelta(days=2)
    pending = apply_extension(order.id, 'pat@example.com', new_return, gateway)
    gateway.succeed(pending.payment_intent_id)

    result = apply_extension(order.id, 'pat@example.com', new_return, gateway, payment_intent_id=pending.payment_intent_id)
    assert result.status == 'applied'
    order = get_order(order.id)
    assert order.return_date == new_return
    assert order.total == 8799
    assert order.items[0].days == 6
    assert {r.end_date for r in reservations_for(order.id)} == {new_return}


def test_extension_rejects_unpaid_or_reused_intent(app, place_order, gateway):
    order = get_order(place_order()['order_id'])
    new_return = order.return_date + timedelta(days=2)
    pending = apply_extension(order.id, 'pat@example.com', new_return, gateway)
    with pytest.raises(ValidationError):
        apply_extension(order.id, 'pat@example.com', new_return, gateway, payment_intent_id=pending.payment_intent_id)
    gateway.succeed(order.payment_intent_id)
    with pytest.raises(ValidationError):
        apply_extension(order.id, 'pat@example.com', new_return, gateway, payment_intent_id=order.payment_intent_id)


def test_shortening_refunds_difference(app, place_order, gateway, confirm_order):
    order = confirm_order(place_order()['order_id'])
    new_return = order.return_date - timedelta(days=2)
    result = apply_extension(order.id, 'pat@example.com', new_return, gateway)
    assert result.status == 'applied'
    assert result.quote.amount_due == -2200
    assert result.refund_status == 'refunded'
    assert gateway.refunds == [(order.payment_intent_id, 2200)]
    assert get_order(order.id).total == 4399


def test_extension_blocked_when_units_are_booked(app, place_order, gateway, catalog):
    items = [{'product_id': catalog['products']['carryon'], 'quantity': 3}]
    first = get_order(place_order(items=items)['order_id'])
    place_order(items=items, days_ahead=16, nights=2)
    with pytest.raises(InsufficientInventoryError):
        apply_extension(first.id, 'pat@example.com', first.return_date + timedelta(days=3), gateway)
    assert len(gateway.intents) == 2


def test_extension_to_past_or_same_date_rejected(app, place_order):
    order = get_order(place_order()['order_id'])
    with pytest.raises(ValidationError):
        quote_extension(order, order.return_date)
    with pytest.raises(ValidationError):
        quote_extension(order, date.today() - timedelta(days=1))


def _paid_extension(order, new_return, gateway):
    pending = apply_extension(order.id, 'pat@example.com', new_return, gateway)
    gateway.succeed(pending.payment_intent_id)
    return pending.payment_intent_id


def test_extension_payment_only_covers_its_own_date(app, place_order, gateway):
    order = get_order(place_order()['order_id'])
    one_day = order.return_date + timedelta(days=1)
    intent_id = _paid_extension(order, one_day, gateway)
    apply_extension(order.id, 'pat@example.com', one_day, gateway, payment_intent_id=intent_id)

    with pytest.raises(ValidationError):
        apply_extension(order.id, 'pat@example.com', one_day + timedelta(days=1), gateway, payment_intent_id=intent_id)
    order = get_order(order.id)
    assert order.return_date == one_day
    assert order.total == 7699


def test_extension_payment_is_spent_once(app, place_order, gateway):
    order = get_order(place_order()['order_id'])
    original, one_day = order.return_date, order.return_date + timedelta(days=1)
    intent_id = _paid_extension(order, one_day, gateway)
    apply_extension(order.id, 'pat@example.com', one_day, gateway, payment_intent_id=intent_id)
    apply_extension(order.id, 'pat@example.com', original, gateway)

    with pytest.raises(ValidationError):
        apply_extension(order.id, 'pat@example.com', one_day, gateway, payment_intent_id=intent_id)
    assert get_order(order.id).return_date == original
    assert OrderPayment.query.filter_by(payment_intent_id=intent_id).count() == 1


def test_extension_payment_for_another_order_rejected(app, place_order, gateway):
    first = get_order(place_order()['order_id'])
    second = get_order(place_order(days_ahead=20)['order_id'])
    intent_id = _paid_extension(first, first.return_date + timedelta(days=1), gateway)
    with pytest.raises(ValidationError):
        apply_extension(second.id, 'pat@example.com', second.return_date + timedelta(days=1), gateway,
                        payment_intent_id=intent_id)
    assert get_order(second.id).return_date == second.return_date
