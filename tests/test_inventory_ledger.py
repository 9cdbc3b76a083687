from datetime import date

import pytest

from app.errors import ValidationError, NotFoundError
from app.services.inventory_ledger import create_units, sku_prefix, inventory_summary, occupancy_forecast
from app.services.reservations import commit_reservations
from models import db, City, Product, InventoryItem, Order


def test_skus_continue_from_highest_sequence(catalog):
    city_id, carryon = catalog['city_id'], catalog['products']['carryon']
    units = create_units(city_id, carryon, 2)
    db.session.commit()
    assert [u.sku for u in units] == ['CO-SEATTLE-004', 'CO-SEATTLE-005']

    db.session.add(InventoryItem(sku='CO-SEATTLE-010', city_id=city_id, product_id=carryon))
    db.session.commit()
    units = create_units(city_id, carryon, 1)
    assert units[0].sku == 'CO-SEATTLE-011'


def test_sequences_are_per_city(catalog):
    portland = City(name='Portland', slug='portland', is_active=True)
    db.session.add(portland)
    db.session.flush()
    units = create_units(portland.id, catalog['products']['large'], 1)
    assert units[0].sku == 'LG-PORTLAND-001'
    assert sku_prefix(portland, db.session.get(Product, catalog['products']['medium'])) == 'MD-PORTLAND'


@pytest.mark.parametrize('quantity', [0, -1])
def test_quantity_must_be_positive(catalog, quantity):
    with pytest.raises(ValidationError):
        create_units(catalog['city_id'], catalog['products']['carryon'], quantity)


def test_sets_have_no_inventory(catalog):
    with pytest.raises(ValidationError):
        create_units(catalog['city_id'], catalog['products']['set'], 1)


def test_unknown_city_or_product(catalog):
    with pytest.raises(NotFoundError):
        create_units(999, catalog['products']['carryon'], 1)
    with pytest.raises(NotFoundError):
        create_units(catalog['city_id'], 999, 1)


def test_summary_and_forecast(catalog):
    city_id = catalog['city_id']
    order = Order(
        customer_email='a@example.com', customer_name='A', delivery_address='addr', delivery_city_id=city_id,
        delivery_date=date(2031, 8, 1), return_date=date(2031, 8, 3), tax_rate=0,
    )
    db.session.add(order)
    db.session.flush()
    commit_reservations(order.id, city_id, date(2031, 8, 1), date(2031, 8, 3), {catalog['products']['set']: 1})
    db.session.commit()

    rows = {row['product']: row for row in inventory_summary(city_id, date(2031, 8, 2))}
    assert set(rows) == {'carryon', 'medium', 'large'}
    assert rows['carryon'] == {
        'product_id': catalog['products']['carryon'], 'product': 'carryon',
        'total': 3, 'retired': 0, 'rented': 1, 'available': 2,
    }
    assert rows['large']['rented'] == 1
    assert rows['medium']['rented'] == 0

    days = occupancy_forecast(city_id, date(2031, 7, 31), date(2031, 8, 1))
    assert days == [
        {'date': '2031-07-31', 'reserved': 0, 'capacity': 7},
        {'date': '2031-08-01', 'reserved': 2, 'capacity': 7},
    ]
