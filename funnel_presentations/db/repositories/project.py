"""Repositories for funnel projects and their generation inputs."""

from funnel_presentations.db.models import BrandDesign, BusinessProfile, DeckStructure, FunnelProject
from funnel_presentations.db.repositories.base import BaseRepository


class FunnelProjectRepository(BaseRepository[FunnelProject]):
    model = FunnelProject


class DeckStructureRepository(BaseRepository[DeckStructure]):
    model = DeckStructure

    def get_for_user(self, deck_structure_id: str, user_id: str) -> DeckStructure | None:
        return self.get_with_filter(deck_structure_id, user_id=user_id)


class BrandDesignRepository(BaseRepository[BrandDesign]):
    model = BrandDesign

    def get_for_project(self, project_id: str) -> BrandDesign | None:
        return self.first_by(funnel_project_id=project_id)


class BusinessProfileRepository(BaseRepository[BusinessProfile]):
    model = BusinessProfile

    def get_for_project(self, project_id: str) -> BusinessProfile | None:
        return self.first_by(funnel_project_id=project_id)
