# sealdesk/core/mixins.py

import uuid

from sqlalchemy import Column, DateTime, func
from sqlalchemy.orm import declared_attr


def new_id() -> str:
    """Primary key factory for every engine table"""
    return str(uuid.uuid4())


# --- Mixins ---
class AuditMixin:
    """Mixin for record timestamps."""

    @declared_attr
    def created_on(cls):
        """
        Column for the timestamp when this record was created
        """
        return Column(
            DateTime(timezone=True),
            server_default=func.now(),
            comment="Timestamp when this record was created",
        )

    @declared_attr
    def updated_on(cls):
        """
        Column for the timestamp when this record was last updated
        """
        return Column(
            DateTime(timezone=True),
            onupdate=func.now(),
            comment="Timestamp when this record was last updated",
        )
