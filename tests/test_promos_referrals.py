from datetime import datetime, timedelta

import pytest

from app.errors import ValidationError, ConflictError
from app.services import promos, referrals
from app.version import API_PREFIX
from models import db, Customer


def _promo(code='SUMMER10', **kwargs):
    promo = promos.create_promo(code, kwargs.pop('discount_type', 'percent'), kwargs.pop('discount_value', 10), **kwargs)
    db.session.commit()
    return promo


def test_promo_accepted_case_insensitively(app):
    _promo()
    decision = promos.check_promo(' summer10 ', 5000)
    assert decision.accepted
    assert decision.to_dict() == {'valid': True, 'code': 'SUMMER10', 'discount_type': 'percent', 'discount_value': 10}


@pytest.mark.parametrize('kwargs,subtotal,reason', [
    ({'expires_at': datetime.utcnow() - timedelta(days=1)}, 5000, 'expired'),
    ({'usage_limit': 0}, 5000, 'usage_limit_reached'),
    ({'min_order_total': 6000}, 5000, 'below_minimum'),
])
def test_promo_rejections(app, kwargs, subtotal, reason):
    _promo(**kwargs)
    decision = promos.check_promo('SUMMER10', subtotal)
    assert not decision.accepted
    assert decision.reason == reason


def test_unknown_or_inactive_promo_is_invalid(app):
    promo = _promo()
    promo.is_active = False
    db.session.commit()
    assert promos.check_promo('SUMMER10', 5000).reason == 'invalid'
    assert promos.check_promo('NOPE', 5000).reason == 'invalid'


def test_consume_promo_respects_limit(app):
    promo = _promo(usage_limit=1)
    promos.consume_promo(promo.id)
    db.session.commit()
    assert promo.times_used == 1
    with pytest.raises(ConflictError):
        promos.consume_promo(promo.id)


def test_create_promo_validates_terms(app):
    with pytest.raises(ValidationError):
        promos.create_promo('BAD', 'percent', 150)
    with pytest.raises(ValidationError):
        promos.create_promo('BAD', 'bogo', 10)


def test_comeback_promo_is_single_use_and_idempotent(app):
    now = datetime(2031, 1, 1, 12, 0)
    first = promos.create_comeback_promo(42, now)
    again = promos.create_comeback_promo(42, now)
    assert first.id == again.id
    assert first.code == 'COMEBACK10-42'
    assert first.usage_limit == 1
    assert first.expires_at == now + timedelta(days=7)


def test_promo_validate_endpoint(client, app):
    _promo(min_order_total=6000)
    r = client.post(f'{API_PREFIX}/promo/validate', json={'code': 'summer10', 'rental_subtotal': 5000})
    assert r.status_code == 200
    assert r.get_json()['data'] == {
        'valid': False,
        'reason': 'below_minimum',
        'message': 'Order total is below the promo code minimum',
    }


def _customer(email, credit=0):
    customer = referrals.get_or_create_customer(email, 'Someone')
    customer.referral_credit = credit
    db.session.commit()
    return customer


def test_referral_checks(app):
    referrer = _customer('ref@example.com')
    code = referrer.referral_code
    assert code.startswith('OOLOO-')

    assert referrals.check_referral(code, 'new@example.com').accepted
    assert referrals.check_referral('OOLOO-NOPE', 'new@example.com').reason == 'invalid'
    assert referrals.check_referral(code, 'REF@example.com').reason == 'own_code'
    assert referrals.check_referral(code, 'new@example.com', promo_code='SUMMER10').reason == 'promo_conflict'

    _customer('rich@example.com', credit=1000)
    assert referrals.check_referral(code, 'rich@example.com').reason == 'has_credit'


def test_referral_rejected_for_returning_customer(place_order, app):
    referrer = _customer('ref@example.com')
    place_order()
    decision = referrals.check_referral(referrer.referral_code, 'pat@example.com')
    assert decision.reason == 'not_new_customer'


def test_adjust_credit_never_goes_negative(app):
    _customer('c@example.com', credit=300)
    assert referrals.adjust_credit('c@example.com', -200, reason='test') == 100
    with pytest.raises(ValidationError):
        referrals.adjust_credit('c@example.com', -200, reason='test')
    with pytest.raises(ValidationError):
        referrals.adjust_credit('nobody@example.com', -1, reason='test')


def test_referral_validate_endpoint(client, app):
    referrer = _customer('ref@example.com')
    r = client.post(f'{API_PREFIX}/referral/validate', json={
        'code': referrer.referral_code.lower(), 'email': 'new@example.com',
    })
    assert r.status_code == 200
    assert r.get_json()['data'] == {'valid': True, 'discount': 1000}
    assert Customer.query.count() == 1
