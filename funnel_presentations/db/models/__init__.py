"""SQLAlchemy ORM models.

Import from here: ``from funnel_presentations.db.models import User, Presentation``
"""

from funnel_presentations.db.models.base import TimestampMixin, generate_uuid
from funnel_presentations.db.models.presentation import (
    VALID_TRANSITIONS,
    Presentation,
    PresentationStatus,
    can_transition,
)
from funnel_presentations.db.models.project import (
    BrandDesign,
    BusinessProfile,
    DeckStructure,
    FunnelProject,
)
from funnel_presentations.db.models.user import User

__all__ = [
    "TimestampMixin",
    "generate_uuid",
    "User",
    "FunnelProject",
    "DeckStructure",
    "BrandDesign",
    "BusinessProfile",
    "Presentation",
    "PresentationStatus",
    "VALID_TRANSITIONS",
    "can_transition",
]
