"""User model."""

from sqlalchemy import Boolean, Column, String

from funnel_presentations.db.database import Base
from funnel_presentations.db.models.base import TimestampMixin, generate_uuid


class User(TimestampMixin, Base):
    __tablename__ = "users"

    id = Column(String, primary_key=True, default=generate_uuid)
    email = Column(String, unique=True, nullable=False, index=True)
    display_name = Column(String, nullable=False)
    is_active = Column(Boolean, default=True)
