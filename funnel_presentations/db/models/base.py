"""Shared model utilities and mixins."""

import uuid
from datetime import datetime

from sqlalchemy import Column, DateTime


def generate_uuid() -> str:
    return str(uuid.uuid4())


class TimestampMixin:
    """Provides a standard ``created_at`` column.

    Models that need ``index=True`` on ``created_at`` should override the column.
    """

    created_at = Column(DateTime, default=datetime.utcnow)
