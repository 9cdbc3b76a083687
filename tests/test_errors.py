import importlib
import sys
import pytest


def load_app(monkeypatch):
    monkeypatch.setenv('APP_ENV', 'testing')
    for module in ['wsgi', 'app.config']:
        if module in sys.modules:
            del sys.modules[module]
    entry = importlib.import_module('wsgi')
    return entry.app


@pytest.fixture()
def test_client(monkeypatch):
    app = load_app(monkeypatch)
    app.config.update(TESTING=True)
    return app.test_client()


def test_404_json_envelope(test_client):
    resp = test_client.get('/no/such/route')
    assert resp.status_code == 404
    data = resp.get_json()
    assert data['status'] == 'error'
    assert data['code'] == 404
    assert isinstance(data.get('message'), str)


def test_unexpected_500_json_envelope(test_client):
    resp = test_client.get('/__boom')
    assert resp.status_code == 500
    data = resp.get_json()
    assert data['status'] == 'error'
    assert data['code'] == 500
    assert 'RuntimeError' not in data['message']


def test_ok_helper_endpoint(test_client):
    resp = test_client.get('/__ok')
    assert resp.status_code == 200
    data = resp.get_json()
    assert data == {
        'status': 'success',
        'message': 'success',
        'data': {'ping': 'pong'}
    }


def test_booking_error_uses_envelope(test_client):
    resp = test_client.post('/api/v1/availability', json={
        'city_id': 1,
        'delivery_date': '2031-01-15',
        'return_date': '2031-01-10',
    })
    assert resp.status_code == 400
    data = resp.get_json()
    assert data['status'] == 'error'
    assert data['code'] == 400
    assert data['message'] == 'Return date must be on or after delivery date'


def test_schema_errors_list_fields(test_client):
    resp = test_client.post('/api/v1/checkout/quote', json={'city_id': 1})
    assert resp.status_code == 400
    data = resp.get_json()
    assert data['message'] == 'Invalid request'
    fields = {e['field'] for e in data['errors']}
    assert {'delivery_date', 'return_date', 'items'} <= fields


def test_insufficient_inventory_carries_counts():
    from app.errors import InsufficientInventoryError
    e = InsufficientInventoryError('carryon', 2, 1)
    assert e.status == 409
    assert e.payload == {'error': 'insufficient_inventory', 'product': 'carryon', 'needed': 2, 'available': 1}
    assert 'needed 2, available 1' in e.message
