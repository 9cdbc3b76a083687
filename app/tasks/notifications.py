import logging
from celery import shared_task
from flask import current_app

logger = logging.getLogger(__name__)


@shared_task(bind=True)
def send_sms_task(self, to: str, body: str):
    """Send one SMS through the configured sender. Failures are not retried."""
    from app import create_app
    from app.services.notifications import get_sms_sender

    app = current_app._get_current_object() if current_app else create_app()
    with app.app_context():
        return get_sms_sender().send(to, body)
