# sealdesk/workflow/tasks.py

"""
Celery tasks for the periodic workflow sweeps

Each sweep opens its own session, delegates to the envelope service and
reports how many items it touched. Re-running a sweep that finds nothing
due is a no-op.
"""

# Third party imports
from celery import shared_task

# Local imports
from sealdesk.core.db import SessionLocal
from sealdesk.integrations.registry import integration_registry
from sealdesk.utils.logger import get_logger
from sealdesk.utils.notifications import get_notification_dispatcher
from sealdesk.utils.storage import get_document_storage
from sealdesk.workflow.services import EnvelopeService

logger = get_logger(__name__)


def _service(db) -> EnvelopeService:
    return EnvelopeService(
        db, get_document_storage(), get_notification_dispatcher(), integrations=integration_registry,
    )


@shared_task(name="sealdesk.workflow.tasks.expire_envelopes")
def expire_envelopes():
    """
    Expire sent or in-progress envelopes past their expiry date
    """
    db = SessionLocal()
    try:
        count = _service(db).expire_envelopes()
        logger.info("Expiry sweep finished", expired=count)
        return {"expired": count}
    except Exception as e:
        db.rollback()
        logger.error("Expiry sweep failed", error=str(e), exc_info=True)
        raise
    finally:
        db.close()


@shared_task(name="sealdesk.workflow.tasks.process_delayed_signers")
def process_delayed_signers():
    """
    Notify delayed signers whose waiting period has ended
    """
    db = SessionLocal()
    try:
        count = _service(db).process_delayed_signers()
        logger.info("Delayed signer sweep finished", promoted=count)
        return {"promoted": count}
    except Exception as e:
        db.rollback()
        logger.error("Delayed signer sweep failed", error=str(e), exc_info=True)
        raise
    finally:
        db.close()


@shared_task(name="sealdesk.workflow.tasks.send_reminders")
def send_reminders():
    db = SessionLocal()
    try:
        count = _service(db).send_reminders()
        logger.info("Reminder sweep finished", reminded=count)
        return {"reminded": count}
    except Exception as e:
        db.rollback()
        logger.error("Reminder sweep failed", error=str(e), exc_info=True)
        raise
    finally:
        db.close()
