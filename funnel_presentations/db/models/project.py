"""Funnel project and the per-project inputs a deck is generated from."""

from datetime import datetime

from sqlalchemy import JSON, Column, DateTime, ForeignKey, String, Text

from funnel_presentations.db.database import Base
from funnel_presentations.db.models.base import TimestampMixin, generate_uuid


class FunnelProject(TimestampMixin, Base):
    __tablename__ = "funnel_projects"

    id = Column(String, primary_key=True, default=generate_uuid)
    name = Column(String, nullable=False)
    user_id = Column(String, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)


class DeckStructure(TimestampMixin, Base):
    """Ordered slide outline (title/section/description per slide) for a deck."""

    __tablename__ = "deck_structures"

    id = Column(String, primary_key=True, default=generate_uuid)
    user_id = Column(String, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    funnel_project_id = Column(
        String, ForeignKey("funnel_projects.id", ondelete="CASCADE"), nullable=False
    )
    title = Column(String, nullable=True)
    slides = Column(JSON, nullable=False, default=list)  # [{title, description, section}]
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)


class BrandDesign(TimestampMixin, Base):
    __tablename__ = "brand_designs"

    id = Column(String, primary_key=True, default=generate_uuid)
    funnel_project_id = Column(
        String, ForeignKey("funnel_projects.id", ondelete="CASCADE"), nullable=False, unique=True
    )
    brand_name = Column(String, nullable=True)
    primary_color = Column(String, nullable=True)
    secondary_color = Column(String, nullable=True)
    accent_color = Column(String, nullable=True)
    background_color = Column(String, nullable=True)
    text_color = Column(String, nullable=True)


class BusinessProfile(TimestampMixin, Base):
    __tablename__ = "business_profiles"

    id = Column(String, primary_key=True, default=generate_uuid)
    funnel_project_id = Column(
        String, ForeignKey("funnel_projects.id", ondelete="CASCADE"), nullable=False, unique=True
    )
    business_name = Column(String, nullable=True)
    target_audience = Column(Text, nullable=True)
    main_offer = Column(Text, nullable=True)
    unique_mechanism = Column(Text, nullable=True)
    brand_voice = Column(String, nullable=True)
