import logging
from contextlib import contextmanager

from models import db

logger = logging.getLogger(__name__)


@contextmanager
def atomic(label: str):
    """
    Run the block as one unit of work on the request session.
    Commits on success; any exception rolls everything back and propagates.
    """
    try:
        yield db.session
        db.session.commit()
    except Exception:
        db.session.rollback()
        logger.info("transaction %s rolled back", label)
        raise
