"""
Profile directory - gender-gated search and profile access
"""
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional
import logging

from ..config import settings
from ..domain.models import Gender, Profile
from ..domain.repositories import IProfileRepository
from ..domain.visibility import is_visible, opposite_gender
from ..errors import GenderRequiredError, SocialClientError, ValidationError
from ..schemas import SearchFilters

logger = logging.getLogger(__name__)

GENDER_REQUIRED_MESSAGE = GenderRequiredError.default_detail
ACCESS_DENIED_MESSAGE = "This profile is not available to you"
NOT_FOUND_MESSAGE = "This profile no longer exists"


class AccessStatus(str, Enum):
    GRANTED = "granted"
    GENDER_REQUIRED = "gender_required"
    DENIED = "denied"
    NOT_FOUND = "not_found"


@dataclass
class ProfileAccess:
    """Result of opening a profile page; profile is None unless granted"""
    status: AccessStatus
    profile: Optional[Profile] = None
    message: Optional[str] = None

    @property
    def granted(self) -> bool:
        return self.status is AccessStatus.GRANTED


@dataclass
class SearchPage:
    profiles: List[Profile] = field(default_factory=list)
    page: int = 0
    has_more: bool = False


class ProfileDirectory:
    """Search and profile-by-id access, both behind the visibility filter"""

    def __init__(self, profiles: IProfileRepository, page_size: Optional[int] = None):
        self.profiles = profiles
        self.page_size = min(page_size or settings.SEARCH_PAGE_SIZE, settings.MAX_PAGE_SIZE)

    async def search(
        self,
        viewer_id: str,
        filters: Optional[SearchFilters] = None,
        page: int = 0,
    ) -> SearchPage:
        """
        One page of opposite-gender public profiles, newest first

        Raises:
            GenderRequiredError: If the viewer has not set a gender; no
                unfiltered list is ever returned
        """
        if not viewer_id:
            raise ValidationError("Viewer is required")
        if page < 0:
            raise ValidationError("Page cannot be negative")

        viewer_gender = await self.profiles.get_gender(viewer_id)
        target = opposite_gender(viewer_gender)
        if target is None:
            raise GenderRequiredError()

        filters = filters or SearchFilters()
        rows = await self.profiles.search(
            viewer_id,
            target,
            limit=self.page_size + 1,
            offset=page * self.page_size,
            **filters.as_query(),
        )

        # Guard against rows that slipped past the query predicate
        visible = [p for p in rows if is_visible(viewer_gender, p.gender) and p.id != viewer_id]
        return SearchPage(
            profiles=visible[: self.page_size],
            page=page,
            has_more=len(rows) > self.page_size,
        )

    async def view_profile(self, viewer_id: str, target_id: str) -> ProfileAccess:
        """Open a profile page, replacing content with a placeholder when not allowed"""
        if not viewer_id or not target_id:
            raise ValidationError("Viewer and profile are required")

        profile = await self.profiles.find_by_id(target_id)
        if profile is None:
            return ProfileAccess(status=AccessStatus.NOT_FOUND, message=NOT_FOUND_MESSAGE)

        if viewer_id == target_id:
            return ProfileAccess(status=AccessStatus.GRANTED, profile=profile)

        viewer_gender = await self.profiles.get_gender(viewer_id)
        if viewer_gender is Gender.UNSET:
            return ProfileAccess(status=AccessStatus.GENDER_REQUIRED, message=GENDER_REQUIRED_MESSAGE)

        if not is_visible(viewer_gender, profile.gender):
            logger.info(f"Profile {target_id} hidden from viewer {viewer_id}")
            return ProfileAccess(status=AccessStatus.DENIED, message=ACCESS_DENIED_MESSAGE)

        try:
            await self.profiles.record_view(viewer_id, target_id)
        except SocialClientError as e:
            logger.warning(f"Failed to record profile view {viewer_id} -> {target_id}: {e.detail}")

        return ProfileAccess(status=AccessStatus.GRANTED, profile=profile)
