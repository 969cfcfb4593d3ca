# sealdesk/identity/tasks.py

# Third party imports
from celery import shared_task

# Local imports
from sealdesk.core.db import SessionLocal
from sealdesk.core.redis import get_ttl_store
from sealdesk.identity.services import IdentityCeremony
from sealdesk.utils.logger import get_logger
from sealdesk.utils.notifications import get_notification_dispatcher

logger = get_logger(__name__)


@shared_task(name="sealdesk.identity.tasks.purge_expired_verification_codes")
def purge_expired_verification_codes():
    """
    Evict expired OTP codes from the verification store
    """
    db = SessionLocal()
    try:
        ceremony = IdentityCeremony(db, get_ttl_store(), get_notification_dispatcher())
        removed = ceremony.purge_expired()
        logger.info("Expired verification codes purged", count=removed)
        return {"removed": removed}
    except Exception as e:
        logger.error("Failed to purge verification codes", error=str(e), exc_info=True)
        raise
    finally:
        db.close()
