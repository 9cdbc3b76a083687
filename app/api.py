from app.routes import (
    auth_bp,
    booking_bp,
    orders_bp,
    webhooks_bp,
    driver_bp,
    admin_bp,
)


def register_api_v1(app):
    """Register blueprint routes under the API version prefix."""
    app.register_blueprint(auth_bp)
    app.register_blueprint(booking_bp)
    app.register_blueprint(orders_bp)
    app.register_blueprint(webhooks_bp)
    app.register_blueprint(driver_bp)
    app.register_blueprint(admin_bp)
