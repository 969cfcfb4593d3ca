# sealdesk/core/db.py

from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base, sessionmaker

from sealdesk.core.config import settings
from sealdesk.utils.logger import get_logger

# --- Configure logging ---
logger = get_logger(__name__)

# --- Create database engine ---
connect_args = {"check_same_thread": False} if settings.db_url.startswith("sqlite") else {}
engine = create_engine(settings.db_url, connect_args=connect_args)

# --- Create sessionmaker ---
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

# --- Create declarative base ---
Base = declarative_base()


def get_db():
    """
    Method for obtaining database session object
    """
    db = SessionLocal()
    try:
        yield db
        logger.debug("Committing DB transaction")
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


def import_models() -> None:
    """
    Import every model module so the metadata knows all tables
    """
    # pylint: disable=import-outside-toplevel,unused-import
    from sealdesk.workflow import models as workflow_models  # noqa: F401
    from sealdesk.fields import models as field_models  # noqa: F401
    from sealdesk.audit import models as audit_models  # noqa: F401
    from sealdesk.identity import models as identity_models  # noqa: F401


def init_db(bind=None) -> None:
    """
    Create all tables on the given engine (defaults to the configured one)
    """
    import_models()
    Base.metadata.create_all(bind=bind or engine)
    logger.info("Database schema ensured")
