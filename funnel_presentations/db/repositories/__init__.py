"""Repository layer: standardized data access for all models."""

from funnel_presentations.db.repositories.base import BaseRepository
from funnel_presentations.db.repositories.presentation import PresentationRepository, merge_slide
from funnel_presentations.db.repositories.project import (
    BrandDesignRepository,
    BusinessProfileRepository,
    DeckStructureRepository,
    FunnelProjectRepository,
)

__all__ = [
    "BaseRepository",
    "PresentationRepository",
    "merge_slide",
    "FunnelProjectRepository",
    "DeckStructureRepository",
    "BrandDesignRepository",
    "BusinessProfileRepository",
]
