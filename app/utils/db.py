from contextlib import contextmanager
import logging
from models import db

logger = logging.getLogger(__name__)


@contextmanager
def transactional(message="DB transaction failed"):
    """Commit on success; roll back, log and re-raise on any error.

    Booking errors (sold out, bad input, conflicts) are expected outcomes and
    are logged without a traceback.
    """
    from app.errors import BookingError

    try:
        yield
        db.session.commit()
    except BookingError as e:
        db.session.rollback()
        logger.warning("%s: %s", message, e.message)
        raise
    except Exception as e:
        logger.error("%s: %s", message, e, exc_info=True)
        db.session.rollback()
        raise
