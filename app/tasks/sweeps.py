from celery import shared_task
from flask import current_app


def _app():
    from app import create_app
    return current_app._get_current_object() if current_app else create_app()


@shared_task
def send_abandoned_notices_task() -> int:
    from app.services.sweeps import send_abandoned_notices
    with _app().app_context():
        return send_abandoned_notices()


@shared_task
def cancel_stale_orders_task() -> int:
    from app.services.sweeps import cancel_stale_orders
    with _app().app_context():
        return cancel_stale_orders()


@shared_task
def send_reminders_task() -> dict:
    from app.services.sweeps import send_reminders
    with _app().app_context():
        return send_reminders()


@shared_task
def close_shipped_returns_task() -> int:
    from app.services.sweeps import close_shipped_returns
    with _app().app_context():
        return close_shipped_returns()
