from .auth import auth_bp
from .booking import booking_bp
from .orders import orders_bp
from .webhooks import webhooks_bp
from .driver import driver_bp
from .admin import admin_bp


__all__ = [
    'auth_bp',
    'booking_bp',
    'orders_bp',
    'webhooks_bp',
    'driver_bp',
    'admin_bp',
]
