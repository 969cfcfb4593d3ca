# sealdesk/core/exceptions.py

"""
Base exception for every engine error.

Each error carries a message, a status code hint that any transport can
map onto its own error model, and a details dict naming the entity and
the rule that was violated.
"""

from typing import Optional

from fastapi import status


class SealdeskBaseException(Exception):
    """Base exception for all signing engine errors."""
    def __init__(
        self,
        message: str,
        status_code: int = status.HTTP_400_BAD_REQUEST,
        details: Optional[dict] = None,
    ):
        self.message = message
        self.status_code = status_code
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> dict:
        return {"error": self.message, "details": self.details}
