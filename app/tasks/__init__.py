from celery_app import celery_app  # noqa: F401  binds shared tasks to the app

from .notifications import send_sms_task  # noqa: F401
from .sweeps import (  # noqa: F401
    send_abandoned_notices_task,
    cancel_stale_orders_task,
    send_reminders_task,
    close_shipped_returns_task,
)
